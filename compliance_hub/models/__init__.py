"""
Compliance Hub — SQLAlchemy models.

The shared ``db`` handle lives here so that every model module can do
``from compliance_hub.models import db`` without importing the app factory.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

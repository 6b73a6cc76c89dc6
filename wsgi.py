"""
WSGI / Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-compliance-template --org-id 1
"""

from compliance_hub import create_app

app = create_app()

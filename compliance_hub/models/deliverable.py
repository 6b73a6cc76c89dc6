"""
Deliverable model — the client-facing work product whose release is gated.

The deliverable itself is owned by the surrounding project system; this
module only carries the columns the compliance engine reads and writes.

Rollup fields (written exclusively by compliance_progress):
    compliance_progress  — 0..100, share of required steps completed/approved
    is_upload_unlocked   — True iff compliance_progress == 100
"""

from datetime import datetime, timezone

from compliance_hub.models import db


class Deliverable(db.Model):
    __tablename__ = "deliverables"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_ref = db.Column(
        db.String(64), nullable=True,
        comment="Identifier of the owning project in the external project system",
    )
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(
        db.String(100), nullable=True,
        comment="Deliverable category tag used to resolve the compliance template",
    )
    status = db.Column(db.String(20), nullable=False, default="pending", comment="pending | uploaded | accepted | rejected")

    compliance_template_id = db.Column(
        db.Integer,
        db.ForeignKey("compliance_templates.id", ondelete="SET NULL"),
        nullable=True,
        comment="Template the step chain was instantiated from; NULL = ungated",
    )
    compliance_progress = db.Column(db.Integer, nullable=False, default=0)
    is_upload_unlocked = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    steps = db.relationship(
        "ComplianceStep",
        back_populates="deliverable",
        cascade="all, delete-orphan",
        order_by="ComplianceStep.step_number",
        lazy="select",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "project_ref": self.project_ref,
            "name": self.name,
            "category": self.category,
            "status": self.status,
            "compliance_template_id": self.compliance_template_id,
            "compliance_progress": self.compliance_progress,
            "is_upload_unlocked": self.is_upload_unlocked,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Deliverable #{self.id} {self.name[:40]} {self.compliance_progress}%>"

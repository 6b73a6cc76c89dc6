"""
Compliance Models — templates and instantiated compliance steps.

ComplianceTemplate
    Reusable, ordered blueprint of step specifications for one deliverable
    category (NULL category = organization-wide fallback).  The step
    specifications are embedded as a JSON list; they are not entities of
    their own.

ComplianceStep
    One stateful unit of compliance work belonging to exactly one
    deliverable.  Created in bulk from a template, each step carries a
    verbatim copy of its specification so later template edits can never
    reach back into an instantiated chain.

Step lifecycle (STEP_TRANSITIONS):
    locked    -> pending (unlock) | draft
    pending   -> draft | completed | submitted
    draft     -> draft | completed | submitted
    submitted -> approved | rejected | draft
    completed -> draft
    approved  -> draft
    rejected  -> draft (re-opened by a draft save)
"""

import enum
from datetime import datetime, timezone

from compliance_hub.models import db


# ── Enumerations ─────────────────────────────────────────────────────────────


class StepStatus(str, enum.Enum):
    LOCKED = "locked"
    PENDING = "pending"
    DRAFT = "draft"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    APPROVED = "approved"
    REJECTED = "rejected"


class StepType(str, enum.Enum):
    FORM = "form"
    CHECKLIST = "checklist"
    FILE_REVIEW = "file-review"
    APPROVAL = "approval"
    OTHER = "other"


# Counted as done by the progress aggregator and the head-step lookup
SUCCESSFUL_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.APPROVED})

# Statuses a step may be submitted from
SUBMITTABLE_STATUSES = frozenset({StepStatus.PENDING, StepStatus.DRAFT})

STEP_TRANSITIONS = {
    StepStatus.LOCKED:    [StepStatus.PENDING],
    StepStatus.PENDING:   [StepStatus.DRAFT, StepStatus.COMPLETED, StepStatus.SUBMITTED],
    StepStatus.DRAFT:     [StepStatus.DRAFT, StepStatus.COMPLETED, StepStatus.SUBMITTED],
    StepStatus.SUBMITTED: [StepStatus.APPROVED, StepStatus.REJECTED, StepStatus.DRAFT],
    StepStatus.COMPLETED: [StepStatus.DRAFT],
    StepStatus.APPROVED:  [StepStatus.DRAFT],
    StepStatus.REJECTED:  [StepStatus.DRAFT],
}


def validate_step_transition(old_status, new_status) -> bool:
    """Return True if a ComplianceStep status transition is valid."""
    return StepStatus(new_status) in STEP_TRANSITIONS.get(StepStatus(old_status), [])


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Keys copied verbatim from a template step specification onto a ComplianceStep
STEP_SPEC_FIELDS = (
    "step_number",
    "step_type",
    "title",
    "description",
    "is_required",
    "requires_admin_approval",
    "auto_unlock_next",
    "form_schema",
    "checklist_items",
)


# ═════════════════════════════════════════════════════════════════════════════
# ComplianceTemplate
# ═════════════════════════════════════════════════════════════════════════════


class ComplianceTemplate(db.Model):
    """
    Ordered list of step specifications for a deliverable category.

    Business rules:
    - Deactivated (is_active=False), never hard-deleted.
    - At most one active default per (organization_id, deliverable_category);
      enforced by compliance_template_service.
    - The steps list cannot be replaced once a chain has been instantiated.
    """

    __tablename__ = "compliance_templates"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    deliverable_category = db.Column(
        db.String(100),
        nullable=True,
        comment="NULL = generic fallback for every category",
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    steps = db.Column(
        db.JSON,
        nullable=False,
        default=list,
        comment="Ordered step specifications: [{step_number, step_type, title, ...}]",
    )
    created_by_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_compliance_template_lookup", "organization_id", "deliverable_category", "is_default"),
    )

    def ordered_steps(self) -> list[dict]:
        return sorted(self.steps or [], key=lambda s: s["step_number"])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "deliverable_category": self.deliverable_category,
            "name": self.name,
            "description": self.description,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "steps": self.ordered_steps(),
            "step_count": len(self.steps or []),
            "created_by_id": self.created_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<ComplianceTemplate #{self.id} {self.name[:40]} category={self.deliverable_category}>"


# ═════════════════════════════════════════════════════════════════════════════
# ComplianceStep
# ═════════════════════════════════════════════════════════════════════════════


class ComplianceStep(db.Model):
    """
    Instantiated compliance step.

    Business rules:
    - (deliverable_id, step_number) is unique; numbers are contiguous from 1.
    - progress is 0 until the step is submitted, then 100.
    - Never deleted while its deliverable exists.
    """

    __tablename__ = "compliance_steps"

    id = db.Column(db.Integer, primary_key=True)
    deliverable_id = db.Column(
        db.Integer,
        db.ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    template_id = db.Column(
        db.Integer,
        db.ForeignKey("compliance_templates.id", ondelete="SET NULL"),
        nullable=True,
        comment="Provenance only — the specification is copied, never re-read",
    )

    # Copied specification
    step_number = db.Column(db.Integer, nullable=False)
    step_type = db.Column(
        db.Enum(StepType, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=StepType.FORM,
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    requires_admin_approval = db.Column(db.Boolean, nullable=False, default=False)
    auto_unlock_next = db.Column(db.Boolean, nullable=False, default=True)
    form_schema = db.Column(db.JSON, nullable=True)

    # State
    status = db.Column(
        db.Enum(StepStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=StepStatus.LOCKED,
        index=True,
    )
    progress = db.Column(db.Integer, nullable=False, default=0, comment="0 or 100")

    # Submitted data
    form_data = db.Column(db.JSON, nullable=True)
    checklist_items = db.Column(db.JSON, nullable=True, comment="[{id, label, checked}]")
    dynamic_list_data = db.Column(db.JSON, nullable=True, comment="[{id, value}]")

    # Timestamps
    last_saved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Review
    approver_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Administrator who approved or rejected the step",
    )
    admin_comment = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    deliverable = db.relationship("Deliverable", back_populates="steps")

    __table_args__ = (
        db.UniqueConstraint("deliverable_id", "step_number", name="uq_compliance_step_number"),
        db.Index("ix_compliance_step_deliverable_status", "deliverable_id", "status"),
    )

    @property
    def is_successful(self) -> bool:
        return self.status in SUCCESSFUL_STATUSES

    def to_dict(self) -> dict:
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "deliverable_id": self.deliverable_id,
            "template_id": self.template_id,
            "step_number": self.step_number,
            "step_type": self.step_type.value if self.step_type else None,
            "title": self.title,
            "description": self.description,
            "is_required": self.is_required,
            "requires_admin_approval": self.requires_admin_approval,
            "auto_unlock_next": self.auto_unlock_next,
            "form_schema": self.form_schema,
            "status": self.status.value if self.status else None,
            "progress": self.progress,
            "form_data": self.form_data or {},
            "checklist_items": self.checklist_items or [],
            "dynamic_list_data": self.dynamic_list_data or [],
            "last_saved_at": _iso(self.last_saved_at),
            "submitted_at": _iso(self.submitted_at),
            "completed_at": _iso(self.completed_at),
            "approved_at": _iso(self.approved_at),
            "rejected_at": _iso(self.rejected_at),
            "approver_id": self.approver_id,
            "admin_comment": self.admin_comment,
            "rejection_reason": self.rejection_reason,
        }

    def __repr__(self) -> str:
        return f"<ComplianceStep #{self.id} d={self.deliverable_id} n={self.step_number} {self.status}>"

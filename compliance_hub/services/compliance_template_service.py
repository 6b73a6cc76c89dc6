"""
Compliance Template Service — Template Store and Step Instantiator.

Template Store
    get_default_template()   category default, else organization-wide default
    create_template() / update_template() / deactivate_template()
    list_templates() / get_template()
    seed_default_template()  CLI seed for a generic organization default

Step Instantiator
    instantiate_steps()      materializes a deliverable's chain from a template
    list_steps()             the chain in ascending step-number order

Rules:
  - Lookups of unknown ids return None; callers translate that into a 404.
  - A template's step list is frozen once any chain has been instantiated
    from it.  Instantiated steps hold verbatim copies of the specifications.
  - instantiate_steps is at-most-once per deliverable: a second call raises
    ConflictError instead of creating a duplicate chain.
  - db.session.commit() happens only in the public functions of this file,
    except instantiate_steps(commit=False) which lets deliverable_service run
    creation and instantiation in one transaction.
"""

from __future__ import annotations

import copy
import logging

from sqlalchemy import func, select

from compliance_hub.core.exceptions import ConflictError, ValidationError
from compliance_hub.models import db
from compliance_hub.models.compliance import (
    STEP_SPEC_FIELDS,
    ComplianceStep,
    ComplianceTemplate,
    StepStatus,
    StepType,
)
from compliance_hub.models.deliverable import Deliverable
from compliance_hub.models.organization import Organization
from compliance_hub.services.compliance_validation import normalize_step_specs

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _clean_category(value) -> str | None:
    value = (value or "").strip() if isinstance(value, str) else value
    return value or None


def _clear_sibling_defaults(template: ComplianceTemplate) -> None:
    """Unset is_default on other active templates sharing org + category."""
    stmt = select(ComplianceTemplate).where(
        ComplianceTemplate.organization_id == template.organization_id,
        ComplianceTemplate.is_default.is_(True),
        ComplianceTemplate.is_active.is_(True),
    )
    if template.deliverable_category is None:
        stmt = stmt.where(ComplianceTemplate.deliverable_category.is_(None))
    else:
        stmt = stmt.where(ComplianceTemplate.deliverable_category == template.deliverable_category)
    if template.id is not None:
        stmt = stmt.where(ComplianceTemplate.id != template.id)

    for sibling in db.session.execute(stmt).scalars():
        sibling.is_default = False
        logger.info(
            "Compliance template %s no longer default (replaced by %s)",
            sibling.id, template.id,
        )


def is_template_in_use(template_id: int) -> bool:
    """True if at least one ComplianceStep was instantiated from the template."""
    count = db.session.execute(
        select(func.count(ComplianceStep.id)).where(ComplianceStep.template_id == template_id)
    ).scalar_one()
    return count > 0


# ── Template Store ─────────────────────────────────────────────────────────────


def get_default_template(org_id: int, deliverable_category: str | None = None) -> ComplianceTemplate | None:
    """Resolve the template that gates a new deliverable.

    Resolution order:
        (a) active + default + deliverable_category == category
        (b) active + default + deliverable_category IS NULL

    Returns:
        The template, or None when the deliverable has no compliance gate.
    """
    base = select(ComplianceTemplate).where(
        ComplianceTemplate.organization_id == org_id,
        ComplianceTemplate.is_active.is_(True),
        ComplianceTemplate.is_default.is_(True),
    ).order_by(ComplianceTemplate.id.desc()).limit(1)

    category = _clean_category(deliverable_category)
    if category:
        scoped = db.session.execute(
            base.where(ComplianceTemplate.deliverable_category == category)
        ).scalar_one_or_none()
        if scoped is not None:
            return scoped

    return db.session.execute(
        base.where(ComplianceTemplate.deliverable_category.is_(None))
    ).scalar_one_or_none()


def get_template(template_id: int, org_id: int | None = None) -> ComplianceTemplate | None:
    """Fetch a template by id, optionally scoped to an organization."""
    template = db.session.get(ComplianceTemplate, template_id)
    if template is None:
        return None
    if org_id is not None and template.organization_id != org_id:
        return None
    return template


def list_templates(
    org_id: int,
    *,
    deliverable_category: str | None = None,
    include_inactive: bool = False,
) -> list[ComplianceTemplate]:
    """Return an organization's templates, newest first."""
    stmt = select(ComplianceTemplate).where(ComplianceTemplate.organization_id == org_id)
    if not include_inactive:
        stmt = stmt.where(ComplianceTemplate.is_active.is_(True))
    category = _clean_category(deliverable_category)
    if category:
        stmt = stmt.where(ComplianceTemplate.deliverable_category == category)
    stmt = stmt.order_by(ComplianceTemplate.id.desc())
    return list(db.session.execute(stmt).scalars())


def create_template(org_id: int, data: dict, created_by_id: int | None = None) -> ComplianceTemplate | None:
    """Create a template from validated input.

    Returns None when the organization does not exist.

    Args:
        org_id: Owning organization.
        data:   {name, description?, deliverable_category?, is_default?, steps}
        created_by_id: Administrator creating the template.

    Raises:
        ValidationError: missing name or invalid step specifications.
    """
    if db.session.get(Organization, org_id) is None:
        return None

    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "is required"})

    specs = normalize_step_specs(data.get("steps"))

    template = ComplianceTemplate(
        organization_id=org_id,
        deliverable_category=_clean_category(data.get("deliverable_category")),
        name=name,
        description=data.get("description"),
        is_default=bool(data.get("is_default", False)),
        is_active=True,
        steps=specs,
        created_by_id=created_by_id,
    )
    db.session.add(template)
    db.session.flush()

    if template.is_default:
        _clear_sibling_defaults(template)

    db.session.commit()
    logger.info(
        "Compliance template created",
        extra={
            "organization_id": org_id,
            "template_id": template.id,
            "step_count": len(specs),
            "is_default": template.is_default,
        },
    )
    return template


def update_template(template: ComplianceTemplate, data: dict) -> ComplianceTemplate:
    """Update a template's metadata and, while unused, its steps.

    Raises:
        ValidationError: invalid input, or steps supplied for a template that
                         already has instantiated chains.
    """
    specs = None
    if "steps" in data:
        if is_template_in_use(template.id):
            raise ValidationError(
                "Template steps cannot change once deliverables use it; create a new template instead",
                details={"steps": "template is in use"},
            )
        specs = normalize_step_specs(data["steps"])

    name = (data.get("name") or "").strip()
    if "name" in data and not name:
        raise ValidationError("name cannot be empty", details={"name": "is required"})

    if specs is not None:
        template.steps = specs
    if name:
        template.name = name
    if "description" in data:
        template.description = data.get("description")
    if "deliverable_category" in data:
        template.deliverable_category = _clean_category(data.get("deliverable_category"))
    if "is_default" in data:
        template.is_default = bool(data["is_default"])

    if template.is_default and template.is_active:
        _clear_sibling_defaults(template)

    db.session.commit()
    logger.info("Compliance template %s updated", template.id)
    return template


def deactivate_template(template: ComplianceTemplate) -> ComplianceTemplate:
    """Soft-delete: the template stops resolving, existing chains are untouched."""
    template.is_active = False
    template.is_default = False
    db.session.commit()
    logger.info("Compliance template %s deactivated", template.id)
    return template


# ── Step Instantiator ──────────────────────────────────────────────────────────


def list_steps(deliverable_id: int) -> list[ComplianceStep]:
    """Return the deliverable's steps in ascending step-number order."""
    return list(db.session.execute(
        select(ComplianceStep)
        .where(ComplianceStep.deliverable_id == deliverable_id)
        .order_by(ComplianceStep.step_number.asc())
    ).scalars())


def instantiate_steps(deliverable_id: int, template_id: int, *, commit: bool = True) -> list[ComplianceStep] | None:
    """Create one ComplianceStep per template specification.

    Step 1 starts as 'pending', every other step as 'locked'.  All
    specification fields are deep-copied so the chain never changes when
    the template does.

    Args:
        commit: False when the caller owns the transaction.

    Returns:
        The created steps ordered by step_number, or None if the deliverable
        or template does not exist (or they belong to different organizations).

    Raises:
        ConflictError: the deliverable already has a step chain.
    """
    deliverable = db.session.get(Deliverable, deliverable_id)
    template = db.session.get(ComplianceTemplate, template_id)
    if deliverable is None or template is None:
        return None
    if template.organization_id != deliverable.organization_id:
        return None

    existing = db.session.execute(
        select(func.count(ComplianceStep.id)).where(ComplianceStep.deliverable_id == deliverable_id)
    ).scalar_one()
    if existing:
        raise ConflictError("ComplianceStep chain", "deliverable_id", str(deliverable_id))

    steps = []
    for spec in template.ordered_steps():
        fields = {key: copy.deepcopy(spec.get(key)) for key in STEP_SPEC_FIELDS}
        fields["step_type"] = StepType(fields["step_type"] or StepType.FORM.value)
        step = ComplianceStep(
            deliverable_id=deliverable_id,
            template_id=template.id,
            status=StepStatus.PENDING if spec["step_number"] == 1 else StepStatus.LOCKED,
            progress=0,
            **fields,
        )
        db.session.add(step)
        steps.append(step)

    deliverable.compliance_template_id = template.id
    db.session.flush()

    if commit:
        db.session.commit()

    logger.info(
        "Compliance steps instantiated",
        extra={
            "deliverable_id": deliverable_id,
            "template_id": template.id,
            "step_count": len(steps),
        },
    )
    return steps


# ── Seed ───────────────────────────────────────────────────────────────────────


def seed_default_template(org_id: int) -> ComplianceTemplate | None:
    """Create the generic organization-wide default template if none exists.

    Safe to run multiple times — returns None when an active organization
    default is already present or the organization does not exist.  Call
    this from the Flask CLI.
    """
    if get_default_template(org_id) is not None:
        return None
    return create_template(org_id, {
        "name": "Standard deliverable compliance",
        "description": "Generic compliance gate applied when no category template exists.",
        "is_default": True,
        "steps": _default_step_specs(),
    })


def _default_step_specs() -> list[dict]:
    return [
        {
            "step_number": 1,
            "step_type": "form",
            "title": "Scope confirmation",
            "description": "Confirm the deliverable matches the agreed scope.",
            "form_schema": {"label": "Scope summary", "placeholder": "Describe what is delivered"},
        },
        {
            "step_number": 2,
            "step_type": "checklist",
            "title": "Quality checklist",
            "checklist_items": [
                {"id": "spellcheck", "label": "Spelling and formatting reviewed"},
                {"id": "sources", "label": "Sources and references cited"},
                {"id": "confidential", "label": "No confidential third-party data included"},
            ],
        },
        {
            "step_number": 3,
            "step_type": "approval",
            "title": "Administrator review",
            "requires_admin_approval": True,
        },
    ]

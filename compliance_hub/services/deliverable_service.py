"""
Deliverable Service — creation of gated deliverables.

create_deliverable() resolves the organization's default compliance
template for the deliverable's category and instantiates the step chain in
the same transaction, so a deliverable is never visible without its gate.
"""

from __future__ import annotations

import logging

from compliance_hub.core.exceptions import ValidationError
from compliance_hub.models import db
from compliance_hub.models.deliverable import Deliverable
from compliance_hub.models.organization import Organization
from compliance_hub.services.compliance_progress import recompute_deliverable_progress
from compliance_hub.services.compliance_template_service import (
    get_default_template,
    get_template,
    instantiate_steps,
)

logger = logging.getLogger(__name__)


def get_deliverable(deliverable_id: int, org_id: int) -> Deliverable | None:
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None or deliverable.organization_id != org_id:
        return None
    return deliverable


def create_deliverable(org_id: int, data: dict) -> Deliverable | None:
    """Create a deliverable and its compliance chain.

    Args:
        org_id: Owning organization.
        data:   {name, category?, project_ref?, compliance_template_id?}
                An explicit template id overrides the default resolution.

    Raises:
        ValidationError: missing name, or an explicit template id that does
                         not exist in the organization.

    Returns:
        The deliverable, or None when the organization does not exist.
    """
    if db.session.get(Organization, org_id) is None:
        return None

    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "is required"})

    category = (data.get("category") or "").strip() or None
    template_id = data.get("compliance_template_id")
    if template_id is not None:
        template = get_template(template_id, org_id)
        if template is None or not template.is_active:
            raise ValidationError(
                "Unknown compliance template",
                details={"compliance_template_id": f"no active template {template_id}"},
            )
    else:
        template = get_default_template(org_id, category)

    deliverable = Deliverable(
        organization_id=org_id,
        name=name,
        category=category,
        project_ref=data.get("project_ref"),
    )
    db.session.add(deliverable)
    try:
        db.session.flush()
        if template is not None:
            instantiate_steps(deliverable.id, template.id, commit=False)
            recompute_deliverable_progress(deliverable.id, org_id, commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Deliverable creation failed", extra={"organization_id": org_id})
        raise

    logger.info(
        "Deliverable %s created (%s)",
        deliverable.id,
        f"gated by template {template.id}" if template else "ungated",
        extra={"deliverable_id": deliverable.id, "organization_id": org_id},
    )
    return deliverable

"""
Approval Gate — administrator-only review actions on compliance steps.

approve_step / reject_step accept or reject a submitted step; only an
active admin of the deliverable's organization may do either.  The state
change itself (and its unlock + rollup side effects) is delegated to
compliance_lifecycle so the whole review is still one transaction.

trigger_unlock_next lets an admin advance a chain by hand, e.g. after a
step was configured with auto_unlock_next = False.

Design decisions:
    - The privilege check lives here, never in the blueprint.
    - A user of another organization is treated as unprivileged rather than
      not-found, so step ids of other organizations are not probed.
    - An empty rejection reason is refused by compliance_lifecycle.reject
      before any row is locked.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from compliance_hub.core.exceptions import PermissionDeniedError, ValidationError
from compliance_hub.models import db
from compliance_hub.models.compliance import ComplianceStep
from compliance_hub.models.deliverable import Deliverable
from compliance_hub.models.organization import User
from compliance_hub.services import compliance_lifecycle

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _require_admin(admin_id, organization_id: int, action: str) -> User:
    user = db.session.get(User, admin_id) if admin_id else None
    if user is None or not user.is_admin or user.organization_id != organization_id:
        logger.warning(
            "Denied '%s' for user %s",
            action, admin_id,
            extra={"organization_id": organization_id},
        )
        raise PermissionDeniedError(admin_id, action)
    return user


# ── Review actions ─────────────────────────────────────────────────────────────


def approve_step(step_id: int, admin_id: int, comment: str | None = None) -> ComplianceStep | None:
    """Approve a submitted step as an administrator.

    Returns:
        The approved step, or None when the step does not exist.

    Raises:
        PermissionDeniedError: admin_id is not an active admin of the step's organization.
        InvalidTransitionError: the step is not in 'submitted'.
    """
    step = db.session.get(ComplianceStep, step_id)
    if step is None:
        return None
    _require_admin(admin_id, step.deliverable.organization_id, "approve compliance steps")

    step = compliance_lifecycle.approve(step_id, admin_id, comment)
    logger.info("Compliance step %s approved by user %s", step_id, admin_id)
    return step


def reject_step(step_id: int, admin_id: int, reason: str) -> ComplianceStep | None:
    """Reject a submitted step with a mandatory reason.

    Raises:
        PermissionDeniedError: not an admin of the step's organization.
        ValidationError: empty reason (raised by compliance_lifecycle.reject).
        InvalidTransitionError: the step is not in 'submitted'.
    """
    step = db.session.get(ComplianceStep, step_id)
    if step is None:
        return None
    _require_admin(admin_id, step.deliverable.organization_id, "reject compliance steps")

    step = compliance_lifecycle.reject(step_id, admin_id, reason)
    logger.info("Compliance step %s rejected by user %s", step_id, admin_id)
    return step


def trigger_unlock_next(deliverable_id: int, step_number: int, admin_id: int) -> ComplianceStep | None:
    """Manually unlock the successor of step ``step_number``.

    The step itself must already be completed or approved; the successor is
    only touched when it is still locked.

    Returns:
        The newly pending successor, or None when nothing changed.

    Raises:
        PermissionDeniedError: not an admin of the deliverable's organization.
        ValidationError: the step does not exist or is not yet successful.
    """
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None:
        return None
    _require_admin(admin_id, deliverable.organization_id, "unlock compliance steps")

    current = db.session.execute(
        select(ComplianceStep).where(
            ComplianceStep.deliverable_id == deliverable_id,
            ComplianceStep.step_number == step_number,
        )
    ).scalar_one_or_none()
    if current is None:
        raise ValidationError(
            f"Deliverable {deliverable_id} has no step {step_number}",
            details={"step_number": "does not exist"},
        )
    if not current.is_successful:
        raise ValidationError(
            f"Step {step_number} must be completed or approved before the next step can be unlocked",
            details={"step_status": current.status.value},
        )

    return compliance_lifecycle.unlock_next(deliverable_id, step_number)

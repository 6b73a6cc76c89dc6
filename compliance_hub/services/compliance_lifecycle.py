"""
Compliance Step Lifecycle — step state machine and unlock propagation.

Manages ComplianceStep status transitions with:
  - Transition validation (STEP_TRANSITIONS / SUBMITTABLE_STATUSES)
  - Side effects (timestamps, progress, review fields)
  - Unlock propagation to the immediate successor
  - Deliverable rollup recomputation

Every public transition is ONE database transaction:

    step-status write  ->  unlock write  ->  rollup write  ->  commit

Any failure along the way rolls the whole sequence back, so a step can
never be committed as completed while its successor or the deliverable
rollup lag behind.  The step row is read SELECT ... FOR UPDATE and its
status re-checked inside the transaction; a concurrent second submission
of the same step therefore fails with InvalidTransitionError.

Usage:
    from compliance_hub.services import compliance_lifecycle

    step = compliance_lifecycle.submit(step_id)
    if step is None:
        ...  # not found
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import select

from compliance_hub.core.exceptions import InvalidTransitionError, ValidationError
from compliance_hub.models import db
from compliance_hub.models.compliance import (
    SUBMITTABLE_STATUSES,
    SUCCESSFUL_STATUSES,
    ComplianceStep,
    StepStatus,
    validate_step_transition,
)
from compliance_hub.services.compliance_progress import recompute_deliverable_progress

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Private helpers ────────────────────────────────────────────────────────────


@contextmanager
def _atomic(action: str, step_id: int):
    """Commit on success, roll back everything on any error."""
    try:
        yield
        db.session.commit()
    except (InvalidTransitionError, ValidationError):
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        logger.exception("Compliance step %s '%s' failed; transaction rolled back", step_id, action)
        raise


def _load_step_for_update(step_id: int) -> ComplianceStep | None:
    """Row-lock the step and refresh it from the database."""
    return db.session.execute(
        select(ComplianceStep)
        .where(ComplianceStep.id == step_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _require_transition(step: ComplianceStep, target: StepStatus, allowed=None) -> None:
    current = step.status
    if allowed is not None and current not in allowed:
        raise InvalidTransitionError(
            step.id, current.value, target.value,
            f"allowed only from {sorted(s.value for s in allowed)}",
        )
    if not validate_step_transition(current, target):
        raise InvalidTransitionError(step.id, current.value, target.value)


def _require_predecessor_done(step: ComplianceStep, target: StepStatus) -> None:
    """Refuse to move a step ahead of an unfinished predecessor."""
    if step.step_number <= 1:
        return
    predecessor = db.session.execute(
        select(ComplianceStep).where(
            ComplianceStep.deliverable_id == step.deliverable_id,
            ComplianceStep.step_number == step.step_number - 1,
        )
    ).scalar_one_or_none()
    if predecessor is not None and predecessor.status not in SUCCESSFUL_STATUSES:
        raise InvalidTransitionError(
            step.id, step.status.value, target.value,
            f"step {predecessor.step_number} is {predecessor.status.value}",
        )


def _clear_review(step: ComplianceStep) -> None:
    step.approver_id = None
    step.approved_at = None
    step.admin_comment = None
    step.rejection_reason = None
    step.rejected_at = None


def _after_status_change(step: ComplianceStep, previous: StepStatus) -> None:
    """Unlock the successor (if due) and recompute the rollup, uncommitted."""
    if step.status in SUCCESSFUL_STATUSES and step.auto_unlock_next:
        unlock_next(step.deliverable_id, step.step_number, commit=False)

    recompute_deliverable_progress(
        step.deliverable_id,
        step.deliverable.organization_id,
        commit=False,
    )
    logger.info(
        "Compliance step %s: %s -> %s",
        step.id, previous.value, step.status.value,
        extra={
            "deliverable_id": step.deliverable_id,
            "step_id": step.id,
            "step_number": step.step_number,
            "step_status": step.status.value,
        },
    )


# ── Unlock Propagator ──────────────────────────────────────────────────────────


def unlock_next(deliverable_id: int, completed_step_number: int, *, commit: bool = True) -> ComplianceStep | None:
    """Advance the immediate successor of a completed step from locked to pending.

    Only the step numbered completed_step_number + 1 is inspected.  No-op
    when it does not exist or is not exactly 'locked', which makes repeated
    calls safe.

    Returns:
        The unlocked step, or None when nothing changed.
    """
    successor = db.session.execute(
        select(ComplianceStep)
        .where(
            ComplianceStep.deliverable_id == deliverable_id,
            ComplianceStep.step_number == completed_step_number + 1,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()

    if successor is None or successor.status != StepStatus.LOCKED:
        return None

    successor.status = StepStatus.PENDING
    if commit:
        db.session.commit()
    else:
        db.session.flush()

    logger.info(
        "Compliance step %s unlocked",
        successor.id,
        extra={"deliverable_id": deliverable_id, "step_number": successor.step_number},
    )
    return successor


# ── Step State Machine ─────────────────────────────────────────────────────────


def save_draft(
    step_id: int,
    form_data: dict,
    checklist_items: list | None = None,
    dynamic_list_data: list | None = None,
) -> ComplianceStep | None:
    """Autosave the step's payload and mark it as draft.

    Allowed from any status.  A locked step only stores the payload and
    stays locked until its predecessor unlocks it.  Omitted (None)
    checklist / dynamic-list payloads keep their stored values.  A rejected step is re-opened by
    this call; its review fields stay visible until the next submit.
    Leaving a completed/approved state lowers the deliverable rollup.
    """
    with _atomic("save_draft", step_id):
        step = _load_step_for_update(step_id)
        if step is None:
            return None

        previous = step.status
        step.form_data = form_data
        if checklist_items is not None:
            step.checklist_items = checklist_items
        if dynamic_list_data is not None:
            step.dynamic_list_data = dynamic_list_data
        step.last_saved_at = _utcnow()

        if previous != StepStatus.LOCKED:
            step.status = StepStatus.DRAFT
            step.progress = 0
            step.completed_at = None
            if previous != StepStatus.DRAFT:
                _after_status_change(step, previous)
    return step


def submit(step_id: int) -> ComplianceStep | None:
    """Submit a pending or draft step.

    requires_admin_approval == False:
        -> completed, progress 100, submitted_at + completed_at, unlock, rollup
    requires_admin_approval == True:
        -> submitted, progress 100, submitted_at; the chain stays gated

    Raises:
        InvalidTransitionError: step is not pending or draft, or the
                                previous step is not completed or approved.
    """
    with _atomic("submit", step_id):
        step = _load_step_for_update(step_id)
        if step is None:
            return None

        target = StepStatus.SUBMITTED if step.requires_admin_approval else StepStatus.COMPLETED
        _require_transition(step, target, SUBMITTABLE_STATUSES)
        _require_predecessor_done(step, target)

        previous = step.status
        now = _utcnow()
        _clear_review(step)
        step.status = target
        step.progress = 100
        step.submitted_at = now
        step.completed_at = now if target == StepStatus.COMPLETED else None

        _after_status_change(step, previous)
    return step


def approve(step_id: int, admin_id: int, comment: str | None = None) -> ComplianceStep | None:
    """Approve a submitted step, then unlock the successor and recompute.

    Callers go through approval_gate, which checks the admin privilege.

    Raises:
        InvalidTransitionError: step is not in 'submitted'.
    """
    with _atomic("approve", step_id):
        step = _load_step_for_update(step_id)
        if step is None:
            return None

        _require_transition(step, StepStatus.APPROVED, {StepStatus.SUBMITTED})

        previous = step.status
        now = _utcnow()
        step.status = StepStatus.APPROVED
        step.progress = 100
        step.approver_id = admin_id
        step.admin_comment = (comment or "").strip() or None
        step.approved_at = now
        step.completed_at = now

        _after_status_change(step, previous)
    return step


def reject(step_id: int, admin_id: int, reason: str) -> ComplianceStep | None:
    """Reject a submitted step.  No unlock, no completion timestamp.

    Raises:
        ValidationError: empty reason.
        InvalidTransitionError: step is not in 'submitted'.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required", details={"reason": "must not be empty"})

    with _atomic("reject", step_id):
        step = _load_step_for_update(step_id)
        if step is None:
            return None

        _require_transition(step, StepStatus.REJECTED, {StepStatus.SUBMITTED})

        previous = step.status
        step.status = StepStatus.REJECTED
        step.progress = 0
        step.approver_id = admin_id
        step.rejection_reason = reason
        step.rejected_at = _utcnow()
        step.completed_at = None

        _after_status_change(step, previous)
    return step


def get_step(step_id: int) -> ComplianceStep | None:
    return db.session.get(ComplianceStep, step_id)

"""
Compliance Progress — deliverable rollup aggregation.

    progress_percent = round_half_up(100 * completed_required / total_required)
    upload_unlocked  = progress_percent == 100

"completed" means status in {completed, approved}; rejected, submitted and
every pre-actionable status count as not done.  A deliverable with no
required steps has no defined progress: nothing is written.

Recomputation is idempotent and may be re-run at any time to reconcile the
rollup fields with the step statuses.
"""

from __future__ import annotations

import logging

from compliance_hub.models import db
from compliance_hub.models.compliance import SUCCESSFUL_STATUSES, ComplianceStep, StepStatus
from compliance_hub.models.deliverable import Deliverable
from compliance_hub.services.compliance_template_service import list_steps

logger = logging.getLogger(__name__)


def round_half_up_percent(numerator: int, denominator: int) -> int:
    """100 * numerator / denominator rounded half-up, in integer arithmetic.

    1/8 -> 12.5 -> 13, 3/8 -> 37.5 -> 38, 1/3 -> 33, 2/3 -> 67.
    """
    return (200 * numerator + denominator) // (2 * denominator)


def compute_progress(steps: list[ComplianceStep]) -> tuple[int, bool] | None:
    """Return (progress_percent, upload_unlocked), or None with no required steps."""
    required = [s for s in steps if s.is_required]
    if not required:
        return None
    done = sum(1 for s in required if s.status in SUCCESSFUL_STATUSES)
    percent = round_half_up_percent(done, len(required))
    return percent, percent == 100


def recompute_deliverable_progress(
    deliverable_id: int,
    org_id: int,
    *,
    commit: bool = True,
) -> Deliverable | None:
    """Recompute and persist the deliverable's rollup fields.

    Args:
        deliverable_id: Deliverable to recompute.
        org_id:         Owning organization; a mismatch is treated as not found.
        commit:         False when called inside a compound state transition
                        whose caller commits once.

    Returns:
        The deliverable (updated, or unchanged when it has no required
        steps), or None when it does not exist in the organization.
    """
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None or deliverable.organization_id != org_id:
        return None

    db.session.flush()
    result = compute_progress(list_steps(deliverable_id))
    if result is None:
        logger.info(
            "Deliverable %s has no required compliance steps; progress not applicable",
            deliverable_id,
        )
        return deliverable

    percent, unlocked = result
    previous = deliverable.compliance_progress
    deliverable.compliance_progress = percent
    deliverable.is_upload_unlocked = unlocked

    if commit:
        db.session.commit()
    else:
        db.session.flush()

    if previous != percent:
        logger.info(
            "Deliverable progress %s%% -> %s%%",
            previous, percent,
            extra={
                "deliverable_id": deliverable_id,
                "organization_id": org_id,
                "is_upload_unlocked": unlocked,
            },
        )
    return deliverable


def get_head_step(steps: list[ComplianceStep]) -> ComplianceStep | None:
    """Earliest step (by number) not yet completed or approved."""
    for step in sorted(steps, key=lambda s: s.step_number):
        if step.status not in SUCCESSFUL_STATUSES:
            return step
    return None


def summarize_steps(steps: list[ComplianceStep]) -> dict:
    """Stepper header data: per-status counts and required completion."""
    by_status = {status.value: 0 for status in StepStatus}
    for step in steps:
        by_status[step.status.value] += 1

    required = [s for s in steps if s.is_required]
    head = get_head_step(steps)
    progress = compute_progress(steps)
    return {
        "total": len(steps),
        "required_total": len(required),
        "required_completed": sum(1 for s in required if s.status in SUCCESSFUL_STATUSES),
        "by_status": by_status,
        "head_step_number": head.step_number if head else None,
        "progress_percent": progress[0] if progress else None,
    }

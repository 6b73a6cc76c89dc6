"""
Compliance Blueprint — templates, step chains and the step lifecycle.

Endpoints (all under /api/v1):

    Templates
    GET    /organizations/<org>/compliance-templates            ?category=&include_inactive=
    POST   /organizations/<org>/compliance-templates
    GET    /organizations/<org>/compliance-templates/default    ?category=
    GET    /compliance-templates/<id>
    PUT    /compliance-templates/<id>
    DELETE /compliance-templates/<id>                            soft delete

    Step chains
    GET    /deliverables/<id>/compliance-steps                   steps + summary
    POST   /deliverables/<id>/compliance-steps                   { "template_id": <int> }
    POST   /deliverables/<id>/compliance-steps/<n>/unlock-next   { "admin_id": <int> }
    POST   /organizations/<org>/deliverables/<id>/recompute-progress

    Step lifecycle
    GET    /compliance-steps/<id>
    POST   /compliance-steps/<id>/save-draft   { "formData", "checklistItems"?, "dynamicListData"? }
    POST   /compliance-steps/<id>/submit
    POST   /compliance-steps/<id>/approve      { "admin_id", "comment"? }
    POST   /compliance-steps/<id>/reject       { "admin_id", "feedback" }

Layer contract:
    - Blueprint: parse + shape-check input (400), call service, return JSON.
    - NO db.session writes here — all commits owned by the services.
    - Service exceptions are mapped once by the errorhandlers below.
"""

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

from compliance_hub.blueprints import paginate_query
from compliance_hub.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from compliance_hub.models import db
from compliance_hub.models.deliverable import Deliverable
from compliance_hub.services import (
    approval_gate,
    compliance_lifecycle,
    compliance_progress,
    compliance_template_service,
)
from compliance_hub.services.compliance_validation import validate_draft_payload
from compliance_hub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

compliance_bp = Blueprint("compliance", __name__, url_prefix="/api/v1")


# ── Error handlers ─────────────────────────────────────────────────────────────


@compliance_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


@compliance_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.BUSINESS_RULE, str(error), details=error.details)


@compliance_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@compliance_bp.errorhandler(InvalidTransitionError)
def _handle_transition(error: InvalidTransitionError):
    return api_error(
        E.CONFLICT_STATE,
        str(error),
        details={"current_status": error.current_status, "target_status": error.target_status},
    )


@compliance_bp.errorhandler(PermissionDeniedError)
def _handle_forbidden(error: PermissionDeniedError):
    return api_error(E.FORBIDDEN, "Administrator privileges required")


@compliance_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in compliance_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Helpers ────────────────────────────────────────────────────────────────────


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _require_int(data: dict, *keys):
    """Return the first present integer field among ``keys``, or None."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _step_or_404(step_id: int):
    step = compliance_lifecycle.get_step(step_id)
    if step is None:
        raise NotFoundError("ComplianceStep", step_id)
    return step


def _deliverable_or_404(deliverable_id: int, org_id: int | None = None):
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None or (org_id is not None and deliverable.organization_id != org_id):
        raise NotFoundError("Deliverable", deliverable_id, org_id)
    return deliverable


def _template_or_404(template_id: int):
    template = compliance_template_service.get_template(template_id)
    if template is None:
        raise NotFoundError("ComplianceTemplate", template_id)
    return template


# ═════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════


@compliance_bp.route("/organizations/<int:org_id>/compliance-templates", methods=["GET"])
def list_templates(org_id: int):
    include_inactive = request.args.get("include_inactive", "false").lower() in ("1", "true", "yes")
    templates = compliance_template_service.list_templates(
        org_id,
        deliverable_category=request.args.get("category"),
        include_inactive=include_inactive,
    )
    items, total = paginate_query(templates)
    return jsonify({"items": [t.to_dict() for t in items], "total": total}), 200


@compliance_bp.route("/organizations/<int:org_id>/compliance-templates", methods=["POST"])
def create_template(org_id: int):
    data = _json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    if "steps" not in data:
        return api_error(E.VALIDATION_REQUIRED, "Field 'steps' is required")

    template = compliance_template_service.create_template(
        org_id, data, created_by_id=_require_int(data, "created_by_id"),
    )
    if template is None:
        raise NotFoundError("Organization", org_id)
    return jsonify(template.to_dict()), 201


@compliance_bp.route("/organizations/<int:org_id>/compliance-templates/default", methods=["GET"])
def get_default_template(org_id: int):
    template = compliance_template_service.get_default_template(org_id, request.args.get("category"))
    if template is None:
        raise NotFoundError("ComplianceTemplate", organization_id=org_id)
    return jsonify(template.to_dict()), 200


@compliance_bp.route("/compliance-templates/<int:template_id>", methods=["GET"])
def get_template(template_id: int):
    return jsonify(_template_or_404(template_id).to_dict()), 200


@compliance_bp.route("/compliance-templates/<int:template_id>", methods=["PUT"])
def update_template(template_id: int):
    template = _template_or_404(template_id)
    data = _json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    template = compliance_template_service.update_template(template, data)
    return jsonify(template.to_dict()), 200


@compliance_bp.route("/compliance-templates/<int:template_id>", methods=["DELETE"])
def delete_template(template_id: int):
    template = compliance_template_service.deactivate_template(_template_or_404(template_id))
    return jsonify(template.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Step chains
# ═════════════════════════════════════════════════════════════════════════


@compliance_bp.route("/deliverables/<int:deliverable_id>/compliance-steps", methods=["GET"])
def list_steps(deliverable_id: int):
    """Return the chain ordered by step number, with the stepper summary."""
    _deliverable_or_404(deliverable_id)
    steps = compliance_template_service.list_steps(deliverable_id)
    return jsonify({
        "items": [s.to_dict() for s in steps],
        "summary": compliance_progress.summarize_steps(steps),
    }), 200


@compliance_bp.route("/deliverables/<int:deliverable_id>/compliance-steps", methods=["POST"])
def instantiate_steps(deliverable_id: int):
    _deliverable_or_404(deliverable_id)
    template_id = _require_int(_json_body(), "template_id")
    if template_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'template_id' is required")

    steps = compliance_template_service.instantiate_steps(deliverable_id, template_id)
    if steps is None:
        raise NotFoundError("ComplianceTemplate", template_id)
    return jsonify({"items": [s.to_dict() for s in steps]}), 201


@compliance_bp.route(
    "/deliverables/<int:deliverable_id>/compliance-steps/<int:step_number>/unlock-next",
    methods=["POST"],
)
def unlock_next(deliverable_id: int, step_number: int):
    """Admin-only manual unlock of step ``step_number + 1``."""
    _deliverable_or_404(deliverable_id)
    admin_id = _require_int(_json_body(), "admin_id")
    if admin_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'admin_id' is required")

    unlocked = approval_gate.trigger_unlock_next(deliverable_id, step_number, admin_id)
    return jsonify({"unlocked": unlocked.to_dict() if unlocked else None}), 200


@compliance_bp.route(
    "/organizations/<int:org_id>/deliverables/<int:deliverable_id>/recompute-progress",
    methods=["POST"],
)
def recompute_progress(org_id: int, deliverable_id: int):
    deliverable = compliance_progress.recompute_deliverable_progress(deliverable_id, org_id)
    if deliverable is None:
        raise NotFoundError("Deliverable", deliverable_id, org_id)
    return jsonify(deliverable.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Step lifecycle
# ═════════════════════════════════════════════════════════════════════════


@compliance_bp.route("/compliance-steps/<int:step_id>", methods=["GET"])
def get_step(step_id: int):
    return jsonify(_step_or_404(step_id).to_dict()), 200


@compliance_bp.route("/compliance-steps/<int:step_id>/save-draft", methods=["POST"])
def save_draft(step_id: int):
    """Autosave.  Accepts camelCase (stepper UI) or snake_case field names."""
    data = _json_body()
    form_data = data.get("formData", data.get("form_data", {}))
    checklist_items = data.get("checklistItems", data.get("checklist_items"))
    dynamic_list_data = data.get("dynamicListData", data.get("dynamic_list_data"))

    errors = validate_draft_payload(form_data, checklist_items, dynamic_list_data)
    if errors:
        return api_error(E.VALIDATION_INVALID, "Invalid draft payload", details=errors)

    step = compliance_lifecycle.save_draft(step_id, form_data, checklist_items, dynamic_list_data)
    if step is None:
        raise NotFoundError("ComplianceStep", step_id)
    return jsonify(step.to_dict()), 200


@compliance_bp.route("/compliance-steps/<int:step_id>/submit", methods=["POST"])
def submit_step(step_id: int):
    step = compliance_lifecycle.submit(step_id)
    if step is None:
        raise NotFoundError("ComplianceStep", step_id)
    return jsonify(step.to_dict()), 200


@compliance_bp.route("/compliance-steps/<int:step_id>/approve", methods=["POST"])
def approve_step(step_id: int):
    data = _json_body()
    admin_id = _require_int(data, "admin_id", "approver_id")
    if admin_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'admin_id' is required")

    step = approval_gate.approve_step(step_id, admin_id, data.get("comment"))
    if step is None:
        raise NotFoundError("ComplianceStep", step_id)
    return jsonify(step.to_dict()), 200


@compliance_bp.route("/compliance-steps/<int:step_id>/reject", methods=["POST"])
def reject_step(step_id: int):
    data = _json_body()
    admin_id = _require_int(data, "admin_id", "approver_id")
    if admin_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'admin_id' is required")

    reason = data.get("feedback", data.get("reason"))
    if not isinstance(reason, str) or not reason.strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'feedback' is required")

    step = approval_gate.reject_step(step_id, admin_id, reason)
    if step is None:
        raise NotFoundError("ComplianceStep", step_id)
    return jsonify(step.to_dict()), 200

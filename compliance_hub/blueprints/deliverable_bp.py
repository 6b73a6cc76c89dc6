"""
Deliverable Blueprint — organization-scoped deliverable creation and lookup.

    POST /api/v1/organizations/<org>/deliverables
         Body: { "name", "category"?, "project_ref"?, "compliance_template_id"? }
         Returns 201 with the deliverable; its compliance chain is created
         from the organization's default template in the same transaction.

    GET  /api/v1/organizations/<org>/deliverables/<id>
         Returns the deliverable with its rollup and the current head step.
"""

import logging

from flask import Blueprint, jsonify, request

from compliance_hub.core.exceptions import NotFoundError, ValidationError
from compliance_hub.services import compliance_progress, deliverable_service
from compliance_hub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

deliverable_bp = Blueprint("deliverables", __name__, url_prefix="/api/v1")


@deliverable_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


@deliverable_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.BUSINESS_RULE, str(error), details=error.details)


@deliverable_bp.route("/organizations/<int:org_id>/deliverables", methods=["POST"])
def create_deliverable(org_id: int):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    if not isinstance(data.get("name"), str) or not data["name"].strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'name' is required")

    deliverable = deliverable_service.create_deliverable(org_id, data)
    if deliverable is None:
        raise NotFoundError("Organization", org_id)
    return jsonify(deliverable.to_dict()), 201


@deliverable_bp.route("/organizations/<int:org_id>/deliverables/<int:deliverable_id>", methods=["GET"])
def get_deliverable(org_id: int, deliverable_id: int):
    deliverable = deliverable_service.get_deliverable(deliverable_id, org_id)
    if deliverable is None:
        raise NotFoundError("Deliverable", deliverable_id, org_id)

    head = compliance_progress.get_head_step(deliverable.steps)
    result = deliverable.to_dict()
    result["head_step"] = head.to_dict() if head else None
    return jsonify(result), 200

"""API tests for the compliance and deliverable blueprints.

Coverage:
  1. Template administration endpoints
  2. Deliverable creation resolves and instantiates the default template
  3. Stepper flow through HTTP: save-draft, submit, approve, reject
  4. Error mapping: 400 malformed input, 403 admin gate, 404, 409, 422
  5. Health probes
"""

import pytest


def _spec(number, **overrides):
    spec = {"step_number": number, "step_type": "form", "title": f"Step {number}"}
    spec.update(overrides)
    return spec


def _create_template(client, org_id, steps=None, **extra):
    payload = {"name": "Standard gate", "is_default": True, "steps": steps or [_spec(1), _spec(2), _spec(3)]}
    payload.update(extra)
    res = client.post(f"/api/v1/organizations/{org_id}/compliance-templates", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _create_deliverable(client, org_id, **extra):
    payload = {"name": "Launch deck"}
    payload.update(extra)
    res = client.post(f"/api/v1/organizations/{org_id}/deliverables", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _steps(client, deliverable_id):
    res = client.get(f"/api/v1/deliverables/{deliverable_id}/compliance-steps")
    assert res.status_code == 200
    return res.get_json()


# ── Templates ───────────────────────────────────────────────────────────────


def test_create_and_fetch_template(client, organization):
    created = _create_template(client, organization.id, category="report")

    assert created["step_count"] == 3
    assert created["deliverable_category"] == "report"

    res = client.get(f"/api/v1/compliance-templates/{created['id']}")
    assert res.status_code == 200
    assert [s["step_number"] for s in res.get_json()["steps"]] == [1, 2, 3]


def test_create_template_invalid_steps_is_422(client, organization):
    res = client.post(
        f"/api/v1/organizations/{organization.id}/compliance-templates",
        json={"name": "Broken", "steps": [_spec(1), _spec(3)]},
    )

    assert res.status_code == 422
    assert res.get_json()["code"] == "ERR_BUSINESS_RULE"


def test_create_template_without_steps_is_400(client, organization):
    res = client.post(f"/api/v1/organizations/{organization.id}/compliance-templates", json={"name": "Empty"})

    assert res.status_code == 400


def test_default_template_lookup(client, organization):
    generic = _create_template(client, organization.id)

    res = client.get(f"/api/v1/organizations/{organization.id}/compliance-templates/default?category=report")

    assert res.status_code == 200
    assert res.get_json()["id"] == generic["id"]


def test_default_template_lookup_404(client, organization):
    res = client.get(f"/api/v1/organizations/{organization.id}/compliance-templates/default")

    assert res.status_code == 404


def test_template_for_unknown_organization_is_404(client):
    res = client.post("/api/v1/organizations/999/compliance-templates", json={"name": "Orphan", "steps": [_spec(1)]})

    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_list_and_delete_template(client, organization):
    created = _create_template(client, organization.id)

    res = client.delete(f"/api/v1/compliance-templates/{created['id']}")
    assert res.status_code == 200
    assert res.get_json()["is_active"] is False

    listing = client.get(f"/api/v1/organizations/{organization.id}/compliance-templates").get_json()
    assert listing["total"] == 0
    listing = client.get(
        f"/api/v1/organizations/{organization.id}/compliance-templates?include_inactive=true"
    ).get_json()
    assert listing["total"] == 1


def test_update_template_frozen_once_used(client, organization):
    template = _create_template(client, organization.id)
    _create_deliverable(client, organization.id)

    res = client.put(f"/api/v1/compliance-templates/{template['id']}", json={"steps": [_spec(1)]})

    assert res.status_code == 422


# ── Deliverables ────────────────────────────────────────────────────────────


def test_deliverable_gets_default_chain(client, organization):
    template = _create_template(client, organization.id)

    deliverable = _create_deliverable(client, organization.id, category="report")

    assert deliverable["compliance_template_id"] == template["id"]
    assert deliverable["compliance_progress"] == 0
    assert deliverable["is_upload_unlocked"] is False

    body = _steps(client, deliverable["id"])
    assert [s["status"] for s in body["items"]] == ["pending", "locked", "locked"]
    assert body["summary"]["head_step_number"] == 1


def test_deliverable_without_template_is_ungated(client, organization):
    deliverable = _create_deliverable(client, organization.id)

    assert deliverable["compliance_template_id"] is None
    assert _steps(client, deliverable["id"])["items"] == []

    res = client.get(f"/api/v1/organizations/{organization.id}/deliverables/{deliverable['id']}")
    assert res.status_code == 200
    assert res.get_json()["head_step"] is None


def test_deliverable_requires_name(client, organization):
    res = client.post(f"/api/v1/organizations/{organization.id}/deliverables", json={"category": "report"})

    assert res.status_code == 400


def test_deliverable_for_unknown_organization_is_404(client):
    res = client.post("/api/v1/organizations/999/deliverables", json={"name": "Orphan"})

    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_deliverable_is_scoped_to_organization(client, organization, other_org_admin):
    deliverable = _create_deliverable(client, organization.id)

    res = client.get(f"/api/v1/organizations/{other_org_admin.organization_id}/deliverables/{deliverable['id']}")

    assert res.status_code == 404


def test_instantiate_twice_is_409(client, organization):
    template = _create_template(client, organization.id)
    deliverable = _create_deliverable(client, organization.id)

    res = client.post(
        f"/api/v1/deliverables/{deliverable['id']}/compliance-steps",
        json={"template_id": template["id"]},
    )

    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"


def test_instantiate_explicitly(client, organization):
    template = _create_template(client, organization.id, is_default=False)
    deliverable = _create_deliverable(client, organization.id)

    res = client.post(
        f"/api/v1/deliverables/{deliverable['id']}/compliance-steps",
        json={"template_id": template["id"]},
    )

    assert res.status_code == 201
    assert len(res.get_json()["items"]) == 3


def test_recompute_progress_endpoint(client, organization, other_org_admin):
    _create_template(client, organization.id)
    deliverable = _create_deliverable(client, organization.id)
    url = f"/api/v1/organizations/{organization.id}/deliverables/{deliverable['id']}/recompute-progress"

    res = client.post(url)
    assert res.status_code == 200
    assert res.get_json()["compliance_progress"] == 0

    foreign = f"/api/v1/organizations/{other_org_admin.organization_id}/deliverables/{deliverable['id']}/recompute-progress"
    assert client.post(foreign).status_code == 404


# ── Stepper flow ────────────────────────────────────────────────────────────


def test_full_flow_unlocks_upload(client, organization):
    _create_template(client, organization.id)
    deliverable = _create_deliverable(client, organization.id)
    steps = _steps(client, deliverable["id"])["items"]

    for step in steps:
        res = client.post(f"/api/v1/compliance-steps/{step['id']}/save-draft", json={"formData": {"ok": True}})
        assert res.status_code == 200
        res = client.post(f"/api/v1/compliance-steps/{step['id']}/submit")
        assert res.status_code == 200
        assert res.get_json()["status"] == "completed"

    res = client.get(f"/api/v1/organizations/{organization.id}/deliverables/{deliverable['id']}")
    body = res.get_json()
    assert body["compliance_progress"] == 100
    assert body["is_upload_unlocked"] is True


def test_save_draft_payload_shapes(client, organization):
    _create_template(client, organization.id)
    deliverable = _create_deliverable(client, organization.id)
    step = _steps(client, deliverable["id"])["items"][0]

    res = client.post(
        f"/api/v1/compliance-steps/{step['id']}/save-draft",
        json={
            "formData": {"scope": "Q3 launch"},
            "checklistItems": [{"id": "a", "label": "Reviewed", "checked": True}],
            "dynamicListData": [{"id": "1", "value": "link"}],
        },
    )

    assert res.status_code == 200
    body = res.get_json()
    assert body["status"] == "draft"
    assert body["form_data"] == {"scope": "Q3 launch"}
    assert body["checklist_items"][0]["checked"] is True
    assert body["dynamic_list_data"] == [{"id": "1", "value": "link"}]


@pytest.mark.parametrize(
    "payload,field",
    [
        ({"formData": ["not", "an", "object"]}, "form_data"),
        ({"formData": {}, "checklistItems": [{"id": "a"}]}, "checklist_items"),
        ({"formData": {}, "checklistItems": [{"id": "a", "label": "A", "checked": "yes"}]}, "checklist_items"),
        ({"formData": {}, "dynamicListData": [{"value": "no id"}]}, "dynamic_list_data"),
    ],
)
def test_malformed_draft_is_400(client, organization, payload, field):
    _create_template(client, organization.id)
    deliverable = _create_deliverable(client, organization.id)
    step = _steps(client, deliverable["id"])["items"][0]

    res = client.post(f"/api/v1/compliance-steps/{step['id']}/save-draft", json=payload)

    assert res.status_code == 400
    assert field in res.get_json()["details"]
    assert client.get(f"/api/v1/compliance-steps/{step['id']}").get_json()["status"] == "pending"


def test_submit_locked_step_is_409(client, organization):
    _create_template(client, organization.id)
    deliverable = _create_deliverable(client, organization.id)
    locked = _steps(client, deliverable["id"])["items"][1]

    res = client.post(f"/api/v1/compliance-steps/{locked['id']}/submit")

    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_CONFLICT_STATE"
    assert body["details"]["current_status"] == "locked"


def test_drafted_locked_step_stays_locked_and_cannot_submit(client, organization):
    _create_template(client, organization.id)
    deliverable = _create_deliverable(client, organization.id)
    last = _steps(client, deliverable["id"])["items"][2]

    res = client.post(f"/api/v1/compliance-steps/{last['id']}/save-draft", json={"formData": {"early": True}})
    assert res.status_code == 200
    assert res.get_json()["status"] == "locked"

    res = client.post(f"/api/v1/compliance-steps/{last['id']}/submit")
    assert res.status_code == 409

    res = client.get(f"/api/v1/organizations/{organization.id}/deliverables/{deliverable['id']}")
    assert res.get_json()["compliance_progress"] == 0


def test_unknown_step_is_404(client):
    assert client.get("/api/v1/compliance-steps/9999").status_code == 404
    assert client.post("/api/v1/compliance-steps/9999/submit").status_code == 404
    assert client.post("/api/v1/compliance-steps/9999/save-draft", json={"formData": {}}).status_code == 404


def test_review_flow_through_api(client, organization, admin_user, member_user):
    _create_template(client, organization.id, steps=[_spec(1, requires_admin_approval=True), _spec(2)])
    deliverable = _create_deliverable(client, organization.id)
    step_id = _steps(client, deliverable["id"])["items"][0]["id"]

    assert client.post(f"/api/v1/compliance-steps/{step_id}/submit").get_json()["status"] == "submitted"

    res = client.post(f"/api/v1/compliance-steps/{step_id}/approve", json={"admin_id": member_user.id})
    assert res.status_code == 403

    res = client.post(f"/api/v1/compliance-steps/{step_id}/reject", json={"admin_id": admin_user.id})
    assert res.status_code == 400

    res = client.post(
        f"/api/v1/compliance-steps/{step_id}/reject",
        json={"admin_id": admin_user.id, "feedback": "incomplete evidence"},
    )
    assert res.status_code == 200
    assert res.get_json()["rejection_reason"] == "incomplete evidence"

    client.post(f"/api/v1/compliance-steps/{step_id}/save-draft", json={"formData": {"fixed": True}})
    client.post(f"/api/v1/compliance-steps/{step_id}/submit")
    res = client.post(
        f"/api/v1/compliance-steps/{step_id}/approve",
        json={"admin_id": admin_user.id, "comment": "Thanks"},
    )
    assert res.status_code == 200
    assert res.get_json()["status"] == "approved"

    items = _steps(client, deliverable["id"])["items"]
    assert [s["status"] for s in items] == ["approved", "pending"]


def test_approve_requires_admin_id(client, organization):
    _create_template(client, organization.id, steps=[_spec(1, requires_admin_approval=True)])
    deliverable = _create_deliverable(client, organization.id)
    step_id = _steps(client, deliverable["id"])["items"][0]["id"]

    assert client.post(f"/api/v1/compliance-steps/{step_id}/approve", json={}).status_code == 400


def test_approve_pending_step_is_409(client, organization, admin_user):
    _create_template(client, organization.id, steps=[_spec(1, requires_admin_approval=True)])
    deliverable = _create_deliverable(client, organization.id)
    step_id = _steps(client, deliverable["id"])["items"][0]["id"]

    res = client.post(f"/api/v1/compliance-steps/{step_id}/approve", json={"admin_id": admin_user.id})

    assert res.status_code == 409


def test_manual_unlock_endpoint(client, organization, admin_user):
    _create_template(client, organization.id, steps=[_spec(1, auto_unlock_next=False), _spec(2)])
    deliverable = _create_deliverable(client, organization.id)
    step_id = _steps(client, deliverable["id"])["items"][0]["id"]
    client.post(f"/api/v1/compliance-steps/{step_id}/submit")

    res = client.post(
        f"/api/v1/deliverables/{deliverable['id']}/compliance-steps/1/unlock-next",
        json={"admin_id": admin_user.id},
    )

    assert res.status_code == 200
    assert res.get_json()["unlocked"]["status"] == "pending"


def test_non_json_body_is_415(client, organization):
    res = client.post(
        f"/api/v1/organizations/{organization.id}/deliverables",
        data="name=x",
        content_type="text/plain",
    )

    assert res.status_code == 415


# ── Health ──────────────────────────────────────────────────────────────────


def test_health_probes(client):
    assert client.get("/api/v1/health").status_code == 200
    assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200
    assert res.get_json()["checks"]["database"]["status"] == "ok"
    assert "X-Request-ID" in res.headers

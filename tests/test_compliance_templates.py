"""Tests for the compliance Template Store and Step Instantiator.

Coverage:
  1. Step specification validation (contiguity, types, flags)
  2. Default template resolution: category default, generic fallback, none
  3. One active default per (organization, category)
  4. Templates freeze once a chain exists; deactivation is a soft delete
  5. instantiate_steps: initial statuses, verbatim copies, at-most-once
"""

import pytest

from compliance_hub.core.exceptions import ConflictError, ValidationError
from compliance_hub.models import db
from compliance_hub.models.compliance import ComplianceStep, ComplianceTemplate, StepStatus, StepType
from compliance_hub.services import compliance_template_service as svc
from compliance_hub.services.compliance_validation import normalize_step_specs


def _spec(number, **overrides):
    spec = {"step_number": number, "step_type": "form", "title": f"Step {number}"}
    spec.update(overrides)
    return spec


# ── Step specification validation ───────────────────────────────────────────


def test_normalize_fills_defaults_and_orders_by_number():
    specs = normalize_step_specs([_spec(2), _spec(1, step_type="checklist")])

    assert [s["step_number"] for s in specs] == [1, 2]
    first = specs[0]
    assert first["step_type"] == "checklist"
    assert first["is_required"] is True
    assert first["requires_admin_approval"] is False
    assert first["auto_unlock_next"] is True
    assert first["checklist_items"] == []


@pytest.mark.parametrize("numbers", [[1, 3], [2, 3], [1, 1]])
def test_normalize_rejects_non_contiguous_or_duplicate_numbers(numbers):
    with pytest.raises(ValidationError) as exc:
        normalize_step_specs([_spec(n) for n in numbers])
    assert "steps" in exc.value.details


def test_normalize_reports_field_errors_by_position():
    with pytest.raises(ValidationError) as exc:
        normalize_step_specs([
            _spec(1, step_type="telepathy"),
            {"step_number": 2, "title": "  "},
            _spec(3, is_required="yes"),
        ])
    details = exc.value.details
    assert "steps[0].step_type" in details
    assert "steps[1].title" in details
    assert "steps[2].is_required" in details


def test_normalize_rejects_empty_list():
    with pytest.raises(ValidationError):
        normalize_step_specs([])


def test_template_checklist_items_are_stored_unchecked():
    specs = normalize_step_specs([
        _spec(1, step_type="checklist", checklist_items=[{"id": "a", "label": "Read it", "checked": True}]),
    ])
    assert specs[0]["checklist_items"] == [{"id": "a", "label": "Read it", "checked": False}]


@pytest.mark.parametrize("tag", ["file-review", "file_review"])
def test_file_review_tag_is_stored_hyphenated(tag):
    specs = normalize_step_specs([_spec(1, step_type=tag)])

    assert specs[0]["step_type"] == "file-review"
    assert StepType(specs[0]["step_type"]) is StepType.FILE_REVIEW


# ── Default template resolution ─────────────────────────────────────────────


def test_default_prefers_category_template(organization, make_template):
    make_template(name="Generic", is_default=True)
    scoped = make_template(name="Reports", category="report", is_default=True)

    found = svc.get_default_template(organization.id, "report")

    assert found.id == scoped.id


def test_default_falls_back_to_generic(organization, make_template):
    generic = make_template(name="Generic", is_default=True)
    make_template(name="Designs", category="design", is_default=True)

    assert svc.get_default_template(organization.id, "report").id == generic.id
    assert svc.get_default_template(organization.id).id == generic.id


def test_default_returns_none_without_match(organization, make_template):
    make_template(name="Not default")
    make_template(name="Designs", category="design", is_default=True)

    assert svc.get_default_template(organization.id, "report") is None


def test_default_ignores_inactive_and_foreign_templates(organization, make_template, other_org_admin):
    inactive = make_template(name="Old", is_default=True)
    svc.deactivate_template(inactive)
    make_template(name="Theirs", is_default=True, org_id=other_org_admin.organization_id)

    assert svc.get_default_template(organization.id) is None


def test_new_default_clears_previous_default(organization, make_template):
    first = make_template(name="First", category="report", is_default=True)
    second = make_template(name="Second", category="report", is_default=True)

    db.session.refresh(first)
    assert first.is_default is False
    assert second.is_default is True
    assert svc.get_default_template(organization.id, "report").id == second.id


def test_default_in_other_category_is_untouched(make_template):
    design = make_template(name="Design", category="design", is_default=True)
    make_template(name="Report", category="report", is_default=True)

    db.session.refresh(design)
    assert design.is_default is True


# ── Template lifecycle ──────────────────────────────────────────────────────


def test_create_template_requires_name(organization):
    with pytest.raises(ValidationError):
        svc.create_template(organization.id, {"name": " ", "steps": [_spec(1)]})


def test_create_template_unknown_organization_returns_none():
    assert svc.create_template(999, {"name": "Orphan", "steps": [_spec(1)]}) is None
    assert db.session.query(ComplianceTemplate).count() == 0


def test_update_steps_allowed_while_unused(make_template):
    template = make_template()

    updated = svc.update_template(template, {"steps": [_spec(1), _spec(2)]})

    assert len(updated.steps) == 2


def test_update_steps_refused_once_instantiated(make_template, make_deliverable):
    template = make_template()
    svc.instantiate_steps(make_deliverable().id, template.id)

    with pytest.raises(ValidationError):
        svc.update_template(template, {"steps": [_spec(1)]})

    db.session.refresh(template)
    assert len(template.steps) == 3


def test_metadata_update_allowed_once_instantiated(make_template, make_deliverable):
    template = make_template()
    svc.instantiate_steps(make_deliverable().id, template.id)

    updated = svc.update_template(template, {"name": "Renamed", "description": "v2"})

    assert updated.name == "Renamed"


def test_deactivate_is_soft_delete(organization, make_template):
    template = make_template(is_default=True)

    svc.deactivate_template(template)

    stored = db.session.get(ComplianceTemplate, template.id)
    assert stored is not None
    assert stored.is_active is False
    assert stored.is_default is False
    assert svc.list_templates(organization.id) == []
    assert len(svc.list_templates(organization.id, include_inactive=True)) == 1


def test_seed_default_template_runs_once(organization):
    first = svc.seed_default_template(organization.id)
    second = svc.seed_default_template(organization.id)

    assert first is not None
    assert first.is_default is True
    assert second is None


# ── Step instantiation ──────────────────────────────────────────────────────


def test_instantiate_unlocks_only_first_step(make_template, make_deliverable):
    template = make_template([_spec(n) for n in range(1, 5)])
    deliverable = make_deliverable()

    steps = svc.instantiate_steps(deliverable.id, template.id)

    assert [s.step_number for s in steps] == [1, 2, 3, 4]
    assert [s.status for s in steps] == [
        StepStatus.PENDING, StepStatus.LOCKED, StepStatus.LOCKED, StepStatus.LOCKED,
    ]
    assert all(s.progress == 0 for s in steps)
    db.session.refresh(deliverable)
    assert deliverable.compliance_template_id == template.id


def test_instantiate_copies_specification(make_template, make_deliverable):
    template = make_template([
        _spec(1, step_type="checklist", checklist_items=[{"id": "x", "label": "Signed"}]),
        _spec(2, step_type="approval", requires_admin_approval=True, is_required=False),
    ])
    deliverable = make_deliverable()

    first, second = svc.instantiate_steps(deliverable.id, template.id)

    assert first.step_type == StepType.CHECKLIST
    assert first.checklist_items == [{"id": "x", "label": "Signed", "checked": False}]
    assert second.step_type == StepType.APPROVAL
    assert second.requires_admin_approval is True
    assert second.is_required is False
    assert second.template_id == template.id


def test_template_changes_do_not_reach_existing_chain(make_template, make_deliverable):
    template = make_template([_spec(1, title="Original")])
    deliverable = make_deliverable()
    svc.instantiate_steps(deliverable.id, template.id)

    template.steps = [_spec(1, title="Changed behind the service's back")]
    db.session.commit()

    steps = svc.list_steps(deliverable.id)
    assert steps[0].title == "Original"


def test_second_instantiation_conflicts(make_template, make_deliverable):
    template = make_template()
    deliverable = make_deliverable()
    svc.instantiate_steps(deliverable.id, template.id)

    with pytest.raises(ConflictError):
        svc.instantiate_steps(deliverable.id, template.id)

    count = db.session.query(ComplianceStep).filter_by(deliverable_id=deliverable.id).count()
    assert count == 3


def test_instantiate_unknown_ids_return_none(make_template, make_deliverable):
    template = make_template()
    deliverable = make_deliverable()

    assert svc.instantiate_steps(9999, template.id) is None
    assert svc.instantiate_steps(deliverable.id, 9999) is None


def test_instantiate_refuses_foreign_template(make_template, make_deliverable, other_org_admin):
    foreign = make_template(org_id=other_org_admin.organization_id)
    deliverable = make_deliverable()

    assert svc.instantiate_steps(deliverable.id, foreign.id) is None
    assert svc.list_steps(deliverable.id) == []

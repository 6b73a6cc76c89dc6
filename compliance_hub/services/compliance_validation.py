"""
Compliance payload validation.

Two entry points, one per boundary:

normalize_step_specs(raw)
    Template step specifications supplied by an administrator.  Returns a
    normalized, step-number-ordered list ready to be stored on a
    ComplianceTemplate.  Raises ValidationError (HTTP 422) on any breach,
    including non-contiguous or duplicate step numbers.

validate_draft_payload(form_data, checklist_items, dynamic_list_data)
    Draft autosave body.  Returns a field -> message dict; an empty dict
    means the payload is well-formed.  Blueprints answer 400 on errors so a
    malformed payload never reaches the state machine.
"""

from __future__ import annotations

from compliance_hub.core.exceptions import ValidationError
from compliance_hub.models.compliance import StepType

_VALID_STEP_TYPES = frozenset(t.value for t in StepType)

# Underscore spellings sent by older clients
_STEP_TYPE_ALIASES = {"file_review": StepType.FILE_REVIEW.value}

_TITLE_MAX = 255


def _as_bool(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ValueError("must be a boolean")


def _normalize_checklist(items, *, allow_checked: bool = True) -> list[dict]:
    """Return checklist items as [{id, label, checked}] or raise ValueError."""
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError("must be a list")
    normalized = []
    seen_ids = set()
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValueError(f"item {index} must be an object")
        label = item.get("label")
        if not isinstance(label, str) or not label.strip():
            raise ValueError(f"item {index} needs a non-empty label")
        item_id = str(item.get("id") or index)
        if item_id in seen_ids:
            raise ValueError(f"duplicate item id '{item_id}'")
        seen_ids.add(item_id)
        checked = item.get("checked", False)
        if not isinstance(checked, bool):
            raise ValueError(f"item {index} 'checked' must be a boolean")
        normalized.append({
            "id": item_id,
            "label": label.strip(),
            "checked": checked if allow_checked else False,
        })
    return normalized


def normalize_step_specs(raw) -> list[dict]:
    """Validate and normalize the step specifications of a template.

    Defaults: step_type="form", is_required=True,
    requires_admin_approval=False, auto_unlock_next=True.

    Raises:
        ValidationError: details keyed by "steps[<i>].<field>" or "steps".
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError("A template needs at least one step", details={"steps": "must be a non-empty list"})

    errors: dict[str, str] = {}
    specs: list[dict] = []

    for index, item in enumerate(raw):
        prefix = f"steps[{index}]"
        if not isinstance(item, dict):
            errors[prefix] = "must be an object"
            continue

        number = item.get("step_number")
        if isinstance(number, bool) or not isinstance(number, int) or number < 1:
            errors[f"{prefix}.step_number"] = "must be a positive integer"

        step_type = item.get("step_type") or StepType.FORM.value
        if isinstance(step_type, str):
            step_type = _STEP_TYPE_ALIASES.get(step_type, step_type)
        if step_type not in _VALID_STEP_TYPES:
            errors[f"{prefix}.step_type"] = f"must be one of {sorted(_VALID_STEP_TYPES)}"

        title = item.get("title")
        if not isinstance(title, str) or not title.strip():
            errors[f"{prefix}.title"] = "is required"
        elif len(title.strip()) > _TITLE_MAX:
            errors[f"{prefix}.title"] = f"must be at most {_TITLE_MAX} characters"

        description = item.get("description")
        if description is not None and not isinstance(description, str):
            errors[f"{prefix}.description"] = "must be a string"

        flags = {}
        for flag, default in (
            ("is_required", True),
            ("requires_admin_approval", False),
            ("auto_unlock_next", True),
        ):
            try:
                flags[flag] = _as_bool(item.get(flag), default)
            except ValueError as exc:
                errors[f"{prefix}.{flag}"] = str(exc)

        form_schema = item.get("form_schema")
        if form_schema is not None and not isinstance(form_schema, dict):
            errors[f"{prefix}.form_schema"] = "must be an object"

        try:
            checklist = _normalize_checklist(item.get("checklist_items"), allow_checked=False)
        except ValueError as exc:
            errors[f"{prefix}.checklist_items"] = str(exc)
            checklist = []

        if any(key.startswith(prefix) for key in errors):
            continue

        specs.append({
            "step_number": number,
            "step_type": step_type,
            "title": title.strip(),
            "description": description,
            "form_schema": form_schema,
            "checklist_items": checklist,
            **flags,
        })

    if errors:
        raise ValidationError("Invalid step specifications", details=errors)

    numbers = sorted(spec["step_number"] for spec in specs)
    if numbers != list(range(1, len(specs) + 1)):
        raise ValidationError(
            "Step numbers must be unique and contiguous starting at 1",
            details={"steps": f"got step numbers {numbers}"},
        )

    return sorted(specs, key=lambda s: s["step_number"])


def validate_draft_payload(form_data, checklist_items=None, dynamic_list_data=None) -> dict[str, str]:
    """Check the shape of a draft autosave payload.

    form_data          object (may be empty)
    checklist_items    list of {id, label, checked: bool} or null
    dynamic_list_data  list of {id, value} or null
    """
    errors: dict[str, str] = {}

    if not isinstance(form_data, dict):
        errors["form_data"] = "must be an object"

    if checklist_items is not None:
        try:
            _normalize_checklist(checklist_items)
        except ValueError as exc:
            errors["checklist_items"] = str(exc)

    if dynamic_list_data is not None:
        if not isinstance(dynamic_list_data, list):
            errors["dynamic_list_data"] = "must be a list"
        else:
            for index, entry in enumerate(dynamic_list_data, start=1):
                if not isinstance(entry, dict) or "id" not in entry or "value" not in entry:
                    errors["dynamic_list_data"] = f"entry {index} must be an object with 'id' and 'value'"
                    break

    return errors

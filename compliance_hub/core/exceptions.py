"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Not-found is deliberately NOT an exception at the service boundary for the
compliance engine: lookups of unknown steps, deliverables or templates return
``None``; the blueprints raise ``NotFoundError`` on such a result and the
registered handler turns it into a 404.

Usage:
    from compliance_hub.core.exceptions import ValidationError, InvalidTransitionError

    raise ValidationError("reason is required", details={"reason": "must not be empty"})
    raise InvalidTransitionError(step_id=7, current="draft", target="approved")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Args:
        resource: Human-readable model/entity name (e.g. "Deliverable").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional — the scope that was enforced.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule (e.g. non-contiguous step numbers, editing a template already in use).

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate something that must exist once.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class InvalidTransitionError(Exception):
    """Raised when a compliance step cannot move from its current status.

    Maps to HTTP 409.

    Args:
        step_id: PK of the step.
        current: Status the step is in.
        target: Status the caller tried to reach.
        reason: Optional extra explanation.
    """

    def __init__(self, step_id: int, current: str, target: str, reason: str | None = None) -> None:
        self.step_id = step_id
        self.current_status = current
        self.target_status = target
        self.reason = reason
        msg = f"Cannot move compliance step {step_id} from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PermissionDeniedError(Exception):
    """Raised when the acting user lacks the privilege an operation requires.

    Maps to HTTP 403.
    """

    def __init__(self, user_id: int | None, action: str) -> None:
        self.user_id = user_id
        self.action = action
        super().__init__(f"User {user_id} is not allowed to {action}")

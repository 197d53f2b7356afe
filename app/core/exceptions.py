"""
Platform-wide exception hierarchy.

Services raise these types; every blueprint registers the same handlers
(app/blueprints/__init__.py) and gets consistent HTTP status codes.
All of them are raised before any mutation is flushed, so a failed
action leaves the aggregate untouched.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="PhdRequest", resource_id=42)
    raise ValidationError("comments are required", details={"comments": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Security note: Used for BOTH genuinely missing records AND lookups
    scoped to the acting party (e.g. a supervisor asking for another
    supervisor's request). A 403 would confirm the resource exists; a 404
    does not.

    Args:
        resource: Human-readable model/entity name (e.g. "PhdRequest").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ForbiddenError(Exception):
    """Raised when the actor lacks the authority the current stage requires.

    Maps to HTTP 403.

    Args:
        actor: Email of the acting user.
        action: What was attempted (e.g. "drc-member-review").
        reason: Optional extra context for the response body.
    """

    def __init__(self, actor: str, action: str, reason: str | None = None) -> None:
        self.actor = actor
        self.action = action
        self.reason = reason
        msg = f"{actor} is not allowed to perform '{action}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class InvalidStateError(Exception):
    """Raised when an action is attempted against a status that does not admit it.

    Maps to HTTP 409. The message tells "not ready yet" apart from
    "already reviewed"; both are the same error kind.

    Args:
        current: The aggregate's current status.
        action: The attempted action.
        message: Human-readable explanation.
    """

    def __init__(self, current: str, action: str, message: str | None = None) -> None:
        self.current_status = current
        self.action = action
        super().__init__(message or f"Cannot '{action}' while status is '{current}'")


class ValidationError(Exception):
    """Raised when a payload fails validation in the service layer.

    Covers missing comments on a revert, too few committee members, bad
    e-mail addresses and similar input problems.

    Maps to HTTP 400 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when the same reviewer acts twice in one round, or a unique key would be duplicated.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field carrying the conflicting value.
        value: The conflicting value.
        message: Optional override for the default "already exists" wording.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")

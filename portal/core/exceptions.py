"""
Portal-wide exception hierarchy.

Services raise these types; the app-level error handlers registered in
``portal.utils.errors`` map each one to a stable error code and HTTP
status, so blueprints never build error responses for domain failures.

Usage:
    from portal.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Report", resource_id=42)
    raise ValidationError("Invalid report", errors=[{"field": "title", "message": "required"}])
"""


class AuthenticationError(Exception):
    """Missing, malformed, expired or otherwise invalid credential (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        self.message = message
        super().__init__(message)


class PermissionDeniedError(Exception):
    """Authenticated caller lacks the role, permission or membership (403).

    Args:
        action: What the caller tried to do, e.g. "edit report".
        reason: Optional detail for logs; not returned to the client.
    """

    def __init__(self, action: str, reason: str | None = None) -> None:
        self.action = action
        self.reason = reason
        super().__init__(f"Not authorized to {action}")


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model name (e.g. "Report", "User").
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


class ValidationError(Exception):
    """Input failed validation. Carries every field error, not just the first.

    Args:
        message: Summary of what failed.
        errors: List of ``{"field": ..., "message": ...}`` entries.
    """

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value (409).

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value (logged; not echoed for secrets).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class VersionConflictError(Exception):
    """The aggregate changed since the caller read it (409)."""

    def __init__(self, resource: str, resource_id, expected=None, actual=None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        msg = f"{resource} id={resource_id} was modified concurrently"
        if expected is not None:
            msg += f" (expected version {expected}, current {actual})"
        super().__init__(msg)


class TransitionError(Exception):
    """Raised when a lifecycle action is not valid from the current status (409)."""

    def __init__(self, action: str, current: str, reason: str | None = None) -> None:
        msg = f"Cannot {action} report in status '{current}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.action = action
        self.current_status = current
        self.reason = reason


class GatewayError(Exception):
    """Attachment storage backend failed or is unreachable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)

"""
Service-layer exception hierarchy.

Services raise these; blueprints register handlers against them once and
map them to HTTP status codes (404 / 422 / 409).

Usage:
    from testmanager.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Step", resource_id=42)
    raise ValidationError("position out of range", details={"position": "0..3"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given parent.

    Used both for missing rows and for rows that exist under a different
    parent; callers cannot tell the two apart.

    Args:
        resource: Human-readable entity name (e.g. "Fixture", "Step").
        resource_id: The PK that was looked up.
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
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422 in blueprint error handlers. Malformed payloads are
    rejected with 400 in the blueprint before reaching a service.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised on a duplicate unique value or a stale concurrent write.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value=None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class StaleStateError(ConflictError):
    """Raised when a caller's expected version no longer matches the parent."""

    def __init__(self, resource: str, expected, actual) -> None:
        super().__init__(resource, "version_no", actual)
        self.expected = expected
        self.actual = actual
        Exception.__init__(
            self, f"{resource} changed concurrently: expected version {expected}, found {actual}",
        )


class ExternalServiceError(Exception):
    """Raised when an AI provider or the test runner cannot be reached."""

    def __init__(self, service: str, message: str = "") -> None:
        self.service = service
        super().__init__(f"{service} failed: {message}" if message else f"{service} failed")

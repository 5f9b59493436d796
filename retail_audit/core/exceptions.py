"""
Platform-wide exception hierarchy.

Services raise these; the application factory registers one error handler
per type so every blueprint gets the same HTTP mapping.

Usage:
    from retail_audit.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Audit", resource_id=42)
    raise ValidationError("score must be between 0 and 5", details={"score": 7})
"""


class NotFoundError(Exception):
    """Raised when a referenced audit, score, action, store or user does not exist.

    Callers get an explicit miss, never an empty default that could be
    mistaken for "no data yet".

    Args:
        resource: Human-readable entity name (e.g. "Audit", "ActionPlan").
        resource_id: The key that was looked up.
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

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique business key.

    Maps to HTTP 409 so the UI can show a specific message
    (store code taken, email already registered).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)

"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from migconf.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Conference", resource_id=42)
    raise ValidationError("name is required", details={"name": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "Conference", "ChecklistTemplate").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
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
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with the current state of a resource.

    Maps to HTTP 409.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Conference domain errors ─────────────────────────────────────────────────


class InvalidTemplateError(ValidationError):
    """Structural template defect (e.g. expected-value rule without a binding).

    Raised at template-save time and by item expansion; blocks the save.
    """


class InvalidTransitionError(ConflictError):
    """Raised when a checklist item cannot move to the requested state."""

    def __init__(self, old_status: str, new_status: str, reason: str | None = None) -> None:
        self.old_status = old_status
        self.new_status = new_status
        msg = f"Invalid transition: {old_status} → {new_status}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class QueryExecutionError(Exception):
    """Connection failure, timeout or SQL error while running a checklist query.

    Caught at the item level: the item moves to ``fail`` and the error text is
    recorded on it. Never propagates into status aggregation.
    """


class LinkNotFoundError(NotFoundError):
    """No conference is reachable through the given access token."""

    def __init__(self) -> None:
        super().__init__("ConferenceLink")


class LinkExpiredError(NotFoundError):
    """The access token matched a conference whose link has expired.

    Subclasses NotFoundError so the public boundary answers exactly like an
    unknown token.
    """

    def __init__(self, conference_id: int | None = None) -> None:
        super().__init__("ConferenceLink")
        self.conference_id = conference_id

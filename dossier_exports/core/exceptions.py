"""
Dossier Exports exception hierarchy.

Services raise these types; callers (CLI, workers, an eventual HTTP layer)
handle them once and map them consistently.

Usage:
    from dossier_exports.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Column", resource_id="h_id=abc123")
    raise ValidationError("format is required", details={"format": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Also raised when a persisted reference (e.g. a presentation filter h_id)
    no longer resolves against the current column catalog. Stale references
    are surfaced, never silently dropped.

    Args:
        resource: Human-readable model/entity name (e.g. "Column", "Export").
        resource_id: The key that was looked up.
        procedure_id: Optional scope that was enforced. For logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        procedure_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.procedure_id = procedure_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" {resource_id}"
        msg += " not found"
        if procedure_id is not None:
            msg += f" (procedure={procedure_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when a job status change is not an edge of the state machine.

    Args:
        resource: Model name.
        old_status: Current status.
        new_status: Requested status.
    """

    def __init__(self, resource: str, old_status: str, new_status: str) -> None:
        self.resource = resource
        self.old_status = old_status
        self.new_status = new_status
        super().__init__(f"Invalid {resource} transition: {old_status} → {new_status}")

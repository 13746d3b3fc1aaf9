"""Error taxonomy for CRM engine operations.

- ValidationError: malformed or missing input, illegal state transition
- ConflictError: uniqueness violation or a blocked delete
- NotFoundError: referenced record absent or soft-deleted
- DependencyError: best-effort external call failed (never fatal)
- PermissionDeniedError: actor lacks the module capability
"""

from __future__ import annotations

from collections.abc import Iterable


class CRMError(Exception):
    """Base class for all CRM engine errors."""

    code = "CRM_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(CRMError):
    """Raised when input is malformed or an operation is not allowed in the current state."""

    code = "VALIDATION_ERROR"


class InvalidTransitionError(ValidationError):
    """Raised when a status change is outside the document's state machine."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        document_type: str,
        from_status: str | None,
        to_status: str,
        allowed: Iterable[str],
        reason: str | None = None,
    ):
        self.document_type = document_type
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = list(allowed)
        permitted = ", ".join(self.allowed) if self.allowed else "none"
        if from_status is None:
            msg = f"Invalid {document_type} status '{to_status}'. Must be one of: {permitted}"
        else:
            msg = (
                f"Invalid {document_type} transition from '{from_status}' to "
                f"'{to_status}'. Permitted: {permitted}"
            )
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class ConflictError(CRMError):
    """Raised on uniqueness violations or deletes blocked by dependants."""

    code = "CONFLICT"


class NotFoundError(CRMError):
    """Raised when a referenced record does not exist for the tenant."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class DependencyError(CRMError):
    """Raised when a best-effort collaborator (email, notification) fails."""

    code = "DEPENDENCY_FAILED"


class PermissionDeniedError(CRMError):
    """Raised when an actor lacks a module capability."""

    code = "PERMISSION_DENIED"

    def __init__(self, module: str, action: str):
        self.module = module
        self.action = action
        super().__init__(f"Permission denied: cannot {action} {module}")

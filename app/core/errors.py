# app/core/errors.py
"""
Typed business errors raised by the service layer.

Each error carries the HTTP status it maps to and a short machine-readable
`code`. `main.py` registers a single handler for `WorkspaceAccessError`, so
endpoints can let these propagate.
"""
from typing import Any, Dict, List, Optional


class WorkspaceAccessError(Exception):
    """Base class for every business error surfaced to API callers."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str = "Request could not be completed."):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationError(WorkspaceAccessError):
    """Malformed or missing input."""

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str = "Invalid input.", errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class NotFoundError(WorkspaceAccessError):
    status_code = 404
    code = "not_found"

    def __init__(self, message: str = "Resource not found."):
        super().__init__(message)


class RegistrationRequiredError(NotFoundError):
    """The invitee has no account yet; the client should route to sign-up."""

    code = "registration_required"

    def __init__(self, invitee_email: str, workspace_name: Optional[str] = None):
        super().__init__("No account exists for the invited email. Please register first.")
        self.invitee_email = invitee_email
        self.workspace_name = workspace_name

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload.update(
            requiresRegistration=True,
            inviteeEmail=self.invitee_email,
            workspaceName=self.workspace_name,
        )
        return payload


class PermissionDeniedError(WorkspaceAccessError):
    status_code = 403
    code = "permission_denied"

    def __init__(self, message: str = "Permission denied."):
        super().__init__(message)


class ConflictError(WorkspaceAccessError):
    status_code = 409
    code = "conflict"

    def __init__(self, message: str = "Resource already exists."):
        super().__init__(message)


class ExpiredError(WorkspaceAccessError):
    status_code = 410
    code = "expired"

    def __init__(self, message: str = "Invitation has expired."):
        super().__init__(message)


class StateError(WorkspaceAccessError):
    """Illegal transition, e.g. cancelling an accepted invitation or removing the owner."""

    status_code = 400
    code = "invalid_state"

    def __init__(self, message: str = "Operation not allowed in the current state."):
        super().__init__(message)


class InternalError(WorkspaceAccessError):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "An internal server error occurred."):
        super().__init__(message)


class DatabaseInteractionError(InternalError):
    """Any unexpected DB-layer failure."""

    code = "database_error"

    def to_payload(self) -> Dict[str, Any]:
        # never leak driver details to callers
        return {"detail": "A database error occurred processing your request.", "code": self.code}

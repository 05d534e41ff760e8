"""Custom exception classes for the application."""

from __future__ import annotations

from google.api_core import exceptions as api_exceptions


class AppError(Exception):
    """Base application error class."""

    def __init__(self, message, status_code=400):
        """Initialize the error."""
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ValidationError(AppError):
    """Raised when user input fails validation."""

    def __init__(self, message="Validation failed."):
        """Initialize the error."""
        super().__init__(message, 400)


class DuplicateResourceError(AppError):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, message="Resource already exists."):
        """Initialize the error."""
        super().__init__(message, 409)


class NotFoundError(AppError):
    """Raised when a resource is not found."""

    def __init__(self, message="Resource not found."):
        """Initialize the error."""
        super().__init__(message, 404)


class SyncError(AppError):
    """A document store failure, classified once at the store boundary."""

    default_code = "unknown"
    default_status = 500

    def __init__(self, message=None, code=None):
        """Initialize the error."""
        self.code = code or self.default_code
        super().__init__(message or user_message(self.code), self.default_status)


class TransientError(SyncError):
    """The store is unreachable; the operation may succeed later."""

    default_code = "unavailable"
    default_status = 503


class PermissionDeniedError(SyncError):
    """The signed-in user may not read or write the target."""

    default_code = "permission-denied"
    default_status = 403


class UnexpectedError(SyncError):
    """Any other store failure."""

    default_code = "unknown"
    default_status = 500


_TRANSIENT_CODES = {
    api_exceptions.ServiceUnavailable: "unavailable",
    api_exceptions.DeadlineExceeded: "deadline-exceeded",
    api_exceptions.RetryError: "unavailable",
}

_PERMISSION_CODES = {
    api_exceptions.PermissionDenied: "permission-denied",
    api_exceptions.Unauthenticated: "unauthenticated",
}

_OTHER_CODES = {
    api_exceptions.NotFound: "not-found",
    api_exceptions.AlreadyExists: "already-exists",
    api_exceptions.ResourceExhausted: "resource-exhausted",
    api_exceptions.FailedPrecondition: "failed-precondition",
    api_exceptions.Cancelled: "cancelled",
    api_exceptions.DataLoss: "data-loss",
}

MESSAGES = {
    "permission-denied": "You don't have permission for this operation.",
    "unauthenticated": "You need to sign in.",
    "not-found": "Document not found.",
    "already-exists": "Document already exists.",
    "resource-exhausted": "Request limit exceeded.",
    "unavailable": "Service is temporarily unavailable. Changes are saved locally.",
    "deadline-exceeded": "The request timed out. Check your connection.",
    "network-request-failed": "No connection. Changes are saved locally.",
    "cancelled": "The operation was cancelled.",
    "data-loss": "Data loss.",
    "failed-precondition": "The operation's precondition was not met.",
    "offline": "This action needs an internet connection.",
}


def user_message(code: str | None) -> str:
    """Return the user-facing notice for a store error code."""
    return MESSAGES.get(code or "", "Something went wrong.")


def _lookup(table: dict, exc: BaseException) -> str | None:
    for exc_type, code in table.items():
        if isinstance(exc, exc_type):
            return code
    return None


def classify_error(exc: BaseException) -> SyncError:
    """Map a raw store or network failure onto the closed sync taxonomy."""
    if isinstance(exc, SyncError):
        return exc

    code = _lookup(_TRANSIENT_CODES, exc)
    if code:
        return TransientError(code=code)
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return TransientError(code="network-request-failed")

    code = _lookup(_PERMISSION_CODES, exc)
    if code:
        return PermissionDeniedError(code=code)

    return UnexpectedError(code=_lookup(_OTHER_CODES, exc) or "unknown")

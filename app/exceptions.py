"""Service-level errors.

Every error subclasses ``ValueError`` so callers that only care about
"the operation was rejected" can keep catching that. The HTTP status for
each class is assigned in ``app.main``.
"""


class ServiceError(ValueError):
    """Base class for rejected operations."""

    default_code = "ERROR"

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code


class ValidationError(ServiceError):
    """Malformed input: empty title, end before start, bad ids."""

    default_code = "VALIDATION_FAILED"


class ConflictError(ServiceError):
    """Operation conflicts with current state (running entry, taken username)."""

    default_code = "CONFLICT"


class NotFoundError(ServiceError):
    """Unknown entry or user, or one owned by somebody else."""

    default_code = "NOT_FOUND"


class AuthenticationError(ServiceError):
    """Invalid credentials."""

    default_code = "INVALID_CREDENTIALS"


class PermissionDeniedError(ServiceError):
    """Authenticated user lacks the required role."""

    default_code = "FORBIDDEN"

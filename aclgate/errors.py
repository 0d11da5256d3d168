"""
Error taxonomy for aclgate.

Every failure the gateway reports is one of these classes. Each carries the
HTTP status and a stable code; the API layer turns them into
{"err": message, "code": code} responses.
"""

from typing import Any, Dict


class GatewayError(Exception):
    """Base class for all errors surfaced to callers."""

    status_code = 500
    code = "SERVER_ERROR"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"err": self.message, "code": self.code}


class AuthError(GatewayError):
    """Missing, invalid or expired bearer token."""

    status_code = 401
    code = "AUTH_ERROR"


class SignatureInvalid(GatewayError):
    """Signature verification failed."""

    status_code = 403
    code = "SIGNATURE_INVALID"


class AccessDenied(GatewayError):
    """Access denied."""

    status_code = 403
    code = "ACCESS_DENIED"


class Forbidden(GatewayError):
    """Operation not allowed on this path."""

    status_code = 403
    code = "FORBIDDEN"


class NotFound(GatewayError):
    """Not found."""

    status_code = 404
    code = "NOT_FOUND"


class Conflict(GatewayError):
    """Record already exists."""

    status_code = 409
    code = "CONFLICT"


class ValidationError(GatewayError):
    """Raised when input validation fails."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "", field: str = ""):
        self.field = field
        if field and message:
            message = f"{field}: {message}"
        super().__init__(message)


class ServerError(GatewayError):
    """Server error."""


class StorageError(ServerError):
    """Persistence adapter failure."""

    code = "STORAGE_ERROR"


class RefreshRejected(AuthError):
    """Invalid refresh token."""

    status_code = 403

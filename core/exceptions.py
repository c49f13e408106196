"""
Domain error taxonomy.

Services raise these; app.py translates them into HTTP responses so no raw
internal error reaches a client.
"""
from typing import Optional


class LostFoundError(Exception):
    """Base class for errors that map onto an HTTP status."""
    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(LostFoundError):
    """Malformed or missing fields, bad domain, bad id format."""
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class InvalidCredentialError(LostFoundError):
    """Unknown account or wrong password. Same message for both."""
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid email or password"


class InvalidOtpError(InvalidCredentialError):
    status_code = 400
    code = "invalid_otp"
    default_message = "Invalid or unknown verification code"


class OtpExpiredError(LostFoundError):
    status_code = 400
    code = "otp_expired"
    default_message = "Verification code has expired. Please request a new one."


class UnauthorizedError(LostFoundError):
    """Missing or invalid session token."""
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required"


class ForbiddenError(LostFoundError):
    """Wrong role/domain or unverified account."""
    status_code = 403
    code = "forbidden"
    default_message = "Access denied"


class NotFoundError(LostFoundError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class ConflictError(LostFoundError):
    """Already-processed report, already-transitioned item, duplicate email."""
    status_code = 409
    code = "conflict"
    default_message = "Resource was already processed"

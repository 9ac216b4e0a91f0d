"""
Authorization engine exceptions

Each taxonomy kind carries the HTTP status it surfaces as. Only the
exception handlers in the API layer turn these into wire responses.
"""
from typing import Any, Dict, Optional

from fastapi import status


class ConfigurationError(Exception):
    """Raised when system configuration is invalid"""
    pass


class AuthError(Exception):
    """Base exception for the authorization engine"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "internal_error"
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        """Message safe to put on the wire"""
        return self.message


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------

class InvalidCredentials(AuthError):
    """Bad email/password; identical whether or not the email exists"""
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "invalid_credentials"
    default_message = "Invalid credentials"


class Unauthenticated(AuthError):
    """
    Token verification failure

    Subclasses are distinguished for logging and metrics only; the wire
    always sees the same generic message.
    """
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "unauthenticated"
    default_message = "Authentication required"
    reason = "unauthenticated"

    @property
    def public_message(self) -> str:
        return Unauthenticated.default_message


class TokenExpired(Unauthenticated):
    default_message = "Token expired"
    reason = "expired"


class TokenInvalid(Unauthenticated):
    default_message = "Token signature or format invalid"
    reason = "invalid"


class TokenMalformed(Unauthenticated):
    default_message = "Token claims missing or invalid"
    reason = "malformed"


class TokenRevoked(Unauthenticated):
    default_message = "Token revoked"
    reason = "revoked"


class PrincipalInactive(Unauthenticated):
    """Token subject is missing from the directory or no longer active"""
    default_message = "Principal is not active"
    reason = "inactive"


class SessionEnded(AuthError):
    """Impersonation token is well signed but its session is no longer active"""
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "session_ended"
    default_message = "Impersonation session has ended"


# ---------------------------------------------------------------------------
# 403
# ---------------------------------------------------------------------------

class Forbidden(AuthError):
    """Role or scope check failed"""
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "forbidden"
    default_message = "Access denied"


class ImpersonationNotAllowed(Forbidden):
    error_code = "impersonation_not_allowed"
    default_message = "Impersonation of this user is not allowed"


class SelfImpersonation(Forbidden):
    error_code = "self_impersonation"
    default_message = "Cannot impersonate yourself"


# ---------------------------------------------------------------------------
# 4xx session / request errors
# ---------------------------------------------------------------------------

class ImpersonationTTLExceeded(AuthError):
    """Requested impersonation lifetime is above the configured cap"""
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "impersonation_ttl_exceeded"
    default_message = "Requested impersonation lifetime exceeds the maximum"


class UserNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "user_not_found"
    default_message = "User not found"


class SessionNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "session_not_found"
    default_message = "Impersonation session not found"


class SessionAlreadyEnded(AuthError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "session_already_ended"
    default_message = "Impersonation session already ended"


class RateLimited(AuthError):
    """Limiter denial (HTTP 429) with a retry-after hint in seconds"""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "rate_limit_exceeded"
    default_message = "Too many requests, please try again later"

    def __init__(self, message: Optional[str] = None, retry_after: int = 60,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["retry_after"] = retry_after
        super().__init__(message, details)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# 5xx
# ---------------------------------------------------------------------------

class AuditUnavailable(AuthError):
    """Audit sink could not durably record a fail-closed action"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "audit_unavailable"
    default_message = "Audit trail unavailable; action not performed"

"""Closed error taxonomy shared by the services and the HTTP layer.

Every failure the service reports maps to exactly one :class:`ErrorCode`.
Codes are part of the public contract and never change; messages may.
Refresh-session failures stay distinct internally for audit logging but are
rendered to clients under a single public code and message.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

_SESSION_MESSAGE = "The session is invalid. Please log in again."


@dataclass(frozen=True)
class _ErrorSpec:
    status_code: int
    message: str
    retryable: bool = False


class ErrorCode(str, Enum):
    """Stable error codes returned to clients."""

    # Email and sign-up input
    EMAIL_DOMAIN_NOT_ALLOWED = "EMAIL_DOMAIN_NOT_ALLOWED"
    EMAIL_ALREADY_EXISTS = "EMAIL_ALREADY_EXISTS"
    NICKNAME_ALREADY_EXISTS = "NICKNAME_ALREADY_EXISTS"
    PASSWORD_MISMATCH = "PASSWORD_MISMATCH"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    INVALID_NICKNAME = "INVALID_NICKNAME"

    # One-time passcodes
    OTP_ALREADY_VERIFIED = "OTP_ALREADY_VERIFIED"
    OTP_COOLDOWN = "OTP_COOLDOWN"
    OTP_DAILY_LIMIT = "OTP_DAILY_LIMIT"
    OTP_NOT_FOUND = "OTP_NOT_FOUND"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_TOO_MANY_FAILURES = "OTP_TOO_MANY_FAILURES"
    OTP_INVALID = "OTP_INVALID"
    OTP_NOT_VERIFIED = "OTP_NOT_VERIFIED"

    # Login and access tokens
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    ACCESS_INVALID = "ACCESS_INVALID"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # Refresh sessions
    REFRESH_INVALID = "REFRESH_INVALID"
    REFRESH_EXPIRED = "REFRESH_EXPIRED"
    REFRESH_REUSED = "REFRESH_REUSED"
    REFRESH_REVOKED = "REFRESH_REVOKED"

    # Infrastructure
    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"

    # Generic
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def status_code(self) -> int:
        return _SPECS[self].status_code

    @property
    def default_message(self) -> str:
        return _SPECS[self].message

    @property
    def retryable(self) -> bool:
        """True for infrastructure failures a caller may safely retry."""
        return _SPECS[self].retryable

    @property
    def public_code(self) -> ErrorCode:
        """Return the code exposed to clients, collapsing session failures."""
        if self in _SESSION_CODES:
            return ErrorCode.REFRESH_INVALID
        return self


_SPECS: dict[ErrorCode, _ErrorSpec] = {
    ErrorCode.EMAIL_DOMAIN_NOT_ALLOWED: _ErrorSpec(400, "Only campus email addresses are allowed."),
    ErrorCode.EMAIL_ALREADY_EXISTS: _ErrorSpec(409, "This email is already registered."),
    ErrorCode.NICKNAME_ALREADY_EXISTS: _ErrorSpec(409, "This nickname is already taken."),
    ErrorCode.PASSWORD_MISMATCH: _ErrorSpec(400, "Passwords do not match."),
    ErrorCode.WEAK_PASSWORD: _ErrorSpec(
        400,
        "Password must be 9-15 characters with a letter, a digit and a symbol.",
    ),
    ErrorCode.INVALID_NICKNAME: _ErrorSpec(
        400,
        "Nickname must be 2-20 letters, digits or underscores.",
    ),
    ErrorCode.OTP_ALREADY_VERIFIED: _ErrorSpec(409, "This email has already been verified."),
    ErrorCode.OTP_COOLDOWN: _ErrorSpec(429, "Please wait before requesting another code."),
    ErrorCode.OTP_DAILY_LIMIT: _ErrorSpec(429, "Daily verification code limit reached."),
    ErrorCode.OTP_NOT_FOUND: _ErrorSpec(400, "No verification code was requested for this email."),
    ErrorCode.OTP_EXPIRED: _ErrorSpec(400, "The verification code has expired."),
    ErrorCode.OTP_TOO_MANY_FAILURES: _ErrorSpec(
        429,
        "Too many failed attempts. Please request a new code.",
    ),
    ErrorCode.OTP_INVALID: _ErrorSpec(400, "The verification code is incorrect."),
    ErrorCode.OTP_NOT_VERIFIED: _ErrorSpec(400, "Email verification is not complete."),
    ErrorCode.INVALID_CREDENTIALS: _ErrorSpec(401, "Invalid email or password."),
    ErrorCode.ACCOUNT_DISABLED: _ErrorSpec(403, "This account is disabled."),
    ErrorCode.AUTH_REQUIRED: _ErrorSpec(401, "Authentication is required."),
    ErrorCode.ACCESS_INVALID: _ErrorSpec(401, "The access token is invalid or expired."),
    ErrorCode.USER_NOT_FOUND: _ErrorSpec(401, "The user no longer exists."),
    ErrorCode.REFRESH_INVALID: _ErrorSpec(401, _SESSION_MESSAGE),
    ErrorCode.REFRESH_EXPIRED: _ErrorSpec(401, _SESSION_MESSAGE),
    ErrorCode.REFRESH_REUSED: _ErrorSpec(401, _SESSION_MESSAGE),
    ErrorCode.REFRESH_REVOKED: _ErrorSpec(401, _SESSION_MESSAGE),
    ErrorCode.LOCK_TIMEOUT: _ErrorSpec(503, "The request could not be processed. Please retry.", True),
    ErrorCode.STORE_UNAVAILABLE: _ErrorSpec(503, "The service is temporarily unavailable.", True),
    ErrorCode.VALIDATION_ERROR: _ErrorSpec(400, "The request is invalid."),
    ErrorCode.INTERNAL_ERROR: _ErrorSpec(500, "An unexpected error occurred."),
}

_SESSION_CODES = frozenset(
    {
        ErrorCode.REFRESH_INVALID,
        ErrorCode.REFRESH_EXPIRED,
        ErrorCode.REFRESH_REUSED,
        ErrorCode.REFRESH_REVOKED,
    }
)


class ApiError(Exception):
    """Typed failure carrying a stable :class:`ErrorCode`.

    Args:
        error_code: Code identifying the violated policy.
        message: Optional override of the code's default message.
        retry_after_seconds: Hint for throttling failures (cooldown, quota).
        details: Extra structured data rendered alongside the message.
    """

    def __init__(
        self,
        error_code: ErrorCode,
        message: str | None = None,
        *,
        retry_after_seconds: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.error_code = error_code
        self.message = message or error_code.default_message
        self.retry_after_seconds = retry_after_seconds
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.error_code.status_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.error_code.value!r})"


class InvalidOtpCode(ApiError):
    """Wrong passcode submitted; the failure counter bump is still committed."""

    def __init__(self) -> None:
        super().__init__(ErrorCode.OTP_INVALID)


class LockTimeoutError(ApiError):
    """The per-key lock could not be acquired in time."""

    def __init__(self, key: str | None = None) -> None:
        super().__init__(ErrorCode.LOCK_TIMEOUT, retry_after_seconds=1)
        self.key = key

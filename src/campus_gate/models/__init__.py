# src/campus_gate/models/__init__.py
"""SQLAlchemy models for the Campus Gate service."""

from .email_otp import EmailOtp, OtpPurpose
from .refresh_token import RefreshToken, RevokeReason
from .user import User, UserRole, UserStatus

__all__ = [
    "EmailOtp", "OtpPurpose",
    "RefreshToken", "RevokeReason",
    "User", "UserRole", "UserStatus",
]

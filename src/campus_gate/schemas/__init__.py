# src/campus_gate/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .auth import (
    AccessTokenResponse,
    ErrorResponse,
    LoginRequest,
    OtpRequest,
    OtpVerifyRequest,
    SignupCompleteRequest,
    SignupResponse,
    UserResponse,
)

__all__ = [
    "AccessTokenResponse", "ErrorResponse",
    "LoginRequest",
    "OtpRequest", "OtpVerifyRequest",
    "SignupCompleteRequest", "SignupResponse",
    "UserResponse",
]

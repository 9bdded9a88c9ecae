# src/campus_gate/services/__init__.py
"""Credential policy services for the Campus Gate application."""

from .login import LoginResult, LoginService
from .mail import CodeIssued, SmtpMailSender
from .otp import OtpPolicy, OtpPolicyEngine
from .sessions import IssuedSession, RefreshSessionEngine, RotationResult
from .signup import SignupService

__all__ = [
    "CodeIssued", "SmtpMailSender",
    "IssuedSession", "RefreshSessionEngine", "RotationResult",
    "LoginResult", "LoginService",
    "OtpPolicy", "OtpPolicyEngine",
    "SignupService",
]

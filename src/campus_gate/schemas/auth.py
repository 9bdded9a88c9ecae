"""Authentication-related Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from campus_gate.models.user import UserRole


class EmailPayload(BaseModel):
    """Body carrying a campus email address."""

    email: EmailStr = Field(..., description="Campus email address")


class OtpRequest(EmailPayload):
    """Request a sign-up verification code."""


class OtpVerifyRequest(EmailPayload):
    """Submit the code received by email."""

    code: str = Field(..., pattern=r"^\d{6}$", description="Six-digit verification code")


class SignupCompleteRequest(EmailPayload):
    """Create an account for a verified email."""

    password: str = Field(..., min_length=1, max_length=128)
    password_confirm: str = Field(..., min_length=1, max_length=128)
    nickname: str = Field(..., min_length=1, max_length=64)


class LoginRequest(BaseModel):
    """Password login. Password rules are left to the service so failures stay uniform."""

    email: EmailStr
    password: str = Field(..., max_length=128)
    remember_me: bool = Field(False, description="Use the long-lived session policy")


class AccessTokenResponse(BaseModel):
    """Short-lived bearer credential; the refresh secret travels in a cookie."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., description="Access token lifetime in seconds")


class UserResponse(BaseModel):
    """Public view of the signed-in member."""

    id: int
    email: str
    nickname: str
    role: UserRole

    model_config = ConfigDict(from_attributes=True)


class SignupResponse(UserResponse):
    """Account created by a completed sign-up."""


class ErrorResponse(BaseModel):
    """Error envelope returned for every failure."""

    code: str
    message: str
    retry_after_seconds: int | None = None
    details: dict = Field(default_factory=dict)

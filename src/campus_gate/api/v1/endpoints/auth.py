# src/campus_gate/api/v1/endpoints/auth.py
"""Authentication endpoints for the Campus Gate API.

Handlers are plain functions: they hold database row locks (or in-process
key locks on SQLite) and therefore run in FastAPI's worker threads rather
than on the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response, status

from campus_gate.api.v1.cookies import (
    clear_refresh_cookie,
    read_refresh_cookie,
    set_refresh_cookie,
)
from campus_gate.api.v1.dependencies import (
    AccessTokenServiceDep,
    CurrentUserDep,
    LoginServiceDep,
    OtpEngineDep,
    SessionDep,
    SessionEngineDep,
    SettingsDep,
    SignupServiceDep,
)
from campus_gate.models import OtpPurpose, RevokeReason
from campus_gate.schemas.auth import (
    AccessTokenResponse,
    ErrorResponse,
    LoginRequest,
    OtpRequest,
    OtpVerifyRequest,
    SignupCompleteRequest,
    SignupResponse,
    UserResponse,
)

router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


def _client_metadata(request: Request) -> tuple[str | None, str | None]:
    user_agent = request.headers.get("user-agent")
    ip_address = request.client.host if request.client else None
    return user_agent, ip_address


@router.post("/signup/otp/request", status_code=status.HTTP_204_NO_CONTENT)
def request_signup_otp(payload: OtpRequest, db: SessionDep, otp_engine: OtpEngineDep) -> Response:
    """Send a sign-up verification code to a campus email address."""
    otp_engine.request_challenge(db, payload.email, OtpPurpose.SIGNUP)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/signup/otp/verify", status_code=status.HTTP_204_NO_CONTENT)
def verify_signup_otp(
    payload: OtpVerifyRequest,
    db: SessionDep,
    otp_engine: OtpEngineDep,
) -> Response:
    """Confirm ownership of the address with the mailed code."""
    otp_engine.verify_challenge(db, payload.email, payload.code, OtpPurpose.SIGNUP)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/signup/complete",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
)
def complete_signup(
    payload: SignupCompleteRequest,
    db: SessionDep,
    signup_service: SignupServiceDep,
) -> SignupResponse:
    """Create the account for a verified email address."""
    user = signup_service.complete_signup(
        db,
        email=payload.email,
        password=payload.password,
        password_confirm=payload.password_confirm,
        nickname=payload.nickname,
    )
    return SignupResponse.model_validate(user)


@router.post("/login", response_model=AccessTokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: SessionDep,
    login_service: LoginServiceDep,
    access_tokens: AccessTokenServiceDep,
    app_settings: SettingsDep,
) -> AccessTokenResponse:
    """Authenticate with email and password.

    The access token is returned in the body; the refresh secret is set as an
    HttpOnly cookie.
    """
    user_agent, ip_address = _client_metadata(request)
    result = login_service.login(
        db,
        email=payload.email,
        password=payload.password,
        remember_me=payload.remember_me,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    set_refresh_cookie(response, result.session, app_settings)
    return AccessTokenResponse(
        access_token=result.access_token,
        expires_in=int(access_tokens.ttl.total_seconds()),
    )


@router.post("/refresh", response_model=AccessTokenResponse)
def refresh(
    request: Request,
    response: Response,
    db: SessionDep,
    session_engine: SessionEngineDep,
    app_settings: SettingsDep,
) -> AccessTokenResponse:
    """Rotate the refresh cookie and mint a new access token."""
    user_agent, ip_address = _client_metadata(request)
    result = session_engine.rotate(
        db,
        read_refresh_cookie(request, app_settings),
        user_agent=user_agent,
        ip_address=ip_address,
    )
    set_refresh_cookie(response, result.session, app_settings)
    return AccessTokenResponse(
        access_token=result.access_token,
        expires_in=int(session_engine.access_tokens.ttl.total_seconds()),
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    request: Request,
    db: SessionDep,
    session_engine: SessionEngineDep,
    app_settings: SettingsDep,
) -> Response:
    """Revoke the current session, if any, and clear its cookie."""
    session_engine.revoke_if_present(
        db,
        read_refresh_cookie(request, app_settings),
        RevokeReason.LOGOUT,
    )
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(response, app_settings)
    return response


@router.post("/logout/all", status_code=status.HTTP_204_NO_CONTENT)
def logout_everywhere(
    current_user: CurrentUserDep,
    db: SessionDep,
    session_engine: SessionEngineDep,
    app_settings: SettingsDep,
) -> Response:
    """Revoke every active session of the signed-in user."""
    session_engine.revoke_all(db, current_user.id, RevokeReason.LOGOUT)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(response, app_settings)
    return response


@router.get("/me", response_model=UserResponse)
def me(current_user: CurrentUserDep) -> UserResponse:
    """Return the signed-in member."""
    return UserResponse.model_validate(current_user)

"""Shared API dependencies for authentication and service wiring."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from campus_gate.core.email_policy import EmailDomainPolicy
from campus_gate.core.errors import ApiError, ErrorCode
from campus_gate.core.security import AccessTokenService, InvalidAccessToken
from campus_gate.core.settings import Settings, settings
from campus_gate.db.locking import KeyedLockStore
from campus_gate.db.session import get_db
from campus_gate.db.time import SystemClock
from campus_gate.models import User
from campus_gate.repositories.user_repo import UserRepository
from campus_gate.services.login import LoginService
from campus_gate.services.mail import SmtpMailSender
from campus_gate.services.otp import OtpPolicyEngine
from campus_gate.services.sessions import RefreshSessionEngine
from campus_gate.services.signup import SignupService

# Missing credentials are reported as AUTH_REQUIRED rather than FastAPI's 403.
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_settings() -> Settings:
    return settings


SettingsDep = Annotated[Settings, Depends(get_settings)]


@lru_cache(maxsize=1)
def get_lock_store() -> KeyedLockStore:
    """Return the process-wide lock store; every engine must share it."""
    return KeyedLockStore(settings.lock_timeout_seconds)


@lru_cache(maxsize=1)
def get_access_token_service() -> AccessTokenService:
    return AccessTokenService.from_settings(settings, clock=SystemClock())


@lru_cache(maxsize=1)
def get_otp_engine() -> OtpPolicyEngine:
    return OtpPolicyEngine.from_settings(
        settings,
        lock_store=get_lock_store(),
        mail_sender=SmtpMailSender.from_settings(settings),
        clock=SystemClock(),
    )


@lru_cache(maxsize=1)
def get_session_engine() -> RefreshSessionEngine:
    return RefreshSessionEngine.from_settings(
        settings,
        lock_store=get_lock_store(),
        access_tokens=get_access_token_service(),
        clock=SystemClock(),
    )


def get_signup_service(
    otp_engine: Annotated[OtpPolicyEngine, Depends(get_otp_engine)],
) -> SignupService:
    return SignupService(otp_engine, clock=otp_engine.clock)


def get_login_service(
    sessions: Annotated[RefreshSessionEngine, Depends(get_session_engine)],
    access_tokens: Annotated[AccessTokenService, Depends(get_access_token_service)],
    app_settings: SettingsDep,
) -> LoginService:
    return LoginService(
        domain_policy=EmailDomainPolicy(app_settings.allowed_email_domain),
        sessions=sessions,
        access_tokens=access_tokens,
        clock=sessions.clock,
    )


OtpEngineDep = Annotated[OtpPolicyEngine, Depends(get_otp_engine)]
SessionEngineDep = Annotated[RefreshSessionEngine, Depends(get_session_engine)]
AccessTokenServiceDep = Annotated[AccessTokenService, Depends(get_access_token_service)]
SignupServiceDep = Annotated[SignupService, Depends(get_signup_service)]
LoginServiceDep = Annotated[LoginService, Depends(get_login_service)]


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: SessionDep,
    access_tokens: AccessTokenServiceDep,
) -> User:
    """Get the current authenticated user from the bearer access token.

    Args:
        credentials: HTTP Bearer token credentials, if any were sent
        db: Database session
        access_tokens: Verifier for access tokens

    Returns:
        User object for the authenticated, active user

    Raises:
        ApiError: ``AUTH_REQUIRED``, ``ACCESS_INVALID``, ``USER_NOT_FOUND`` or
            ``ACCOUNT_DISABLED``
    """
    if credentials is None or not credentials.credentials.strip():
        raise ApiError(ErrorCode.AUTH_REQUIRED)
    try:
        principal = access_tokens.verify(credentials.credentials)
    except InvalidAccessToken as err:
        raise ApiError(ErrorCode.ACCESS_INVALID) from err

    user = UserRepository(db).get_by_id(principal.user_id)
    if user is None:
        raise ApiError(ErrorCode.USER_NOT_FOUND)
    if not user.is_active:
        raise ApiError(ErrorCode.ACCOUNT_DISABLED)
    return user


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]

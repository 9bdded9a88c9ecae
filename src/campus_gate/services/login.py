"""Password login producing an access token and a refresh session."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from campus_gate.core import security
from campus_gate.core.email_policy import EmailDomainPolicy
from campus_gate.core.errors import ApiError, ErrorCode
from campus_gate.core.security import AccessTokenService
from campus_gate.db.time import Clock, SystemClock
from campus_gate.db.unit_of_work import unit_of_work
from campus_gate.repositories.user_repo import UserRepository
from campus_gate.services.sessions import IssuedSession, RefreshSessionEngine

logger = logging.getLogger(__name__)

__all__ = ["LoginResult", "LoginService"]


@dataclass(frozen=True)
class LoginResult:
    access_token: str = field(repr=False)
    session: IssuedSession
    user_id: int


class LoginService:
    """Check credentials and open a session."""

    def __init__(
        self,
        *,
        domain_policy: EmailDomainPolicy,
        sessions: RefreshSessionEngine,
        access_tokens: AccessTokenService,
        clock: Clock | None = None,
    ) -> None:
        self.domain_policy = domain_policy
        self.sessions = sessions
        self.access_tokens = access_tokens
        self.clock = clock or SystemClock()

    def login(
        self,
        db: Session,
        *,
        email: str,
        password: str,
        remember_me: bool = False,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> LoginResult:
        """Authenticate and issue credentials.

        Unknown emails and wrong passwords are indistinguishable, including in
        timing: a dummy hash is verified when no account matches.

        Raises:
            ApiError: ``INVALID_CREDENTIALS``, ``EMAIL_DOMAIN_NOT_ALLOWED`` or
                ``ACCOUNT_DISABLED``.
        """
        if not email or not email.strip() or not password:
            raise ApiError(ErrorCode.INVALID_CREDENTIALS)
        normalized = self.domain_policy.require(email)

        with unit_of_work(db):
            user = UserRepository(db).get_by_email(normalized)
            stored_hash = user.password_hash if user else security.dummy_password_hash()
            password_ok = security.verify_password(stored_hash, password)
            if user is None or not password_ok:
                logger.info("Failed login for %s", normalized)
                raise ApiError(ErrorCode.INVALID_CREDENTIALS)
            if not user.is_active:
                logger.info("Login refused for disabled account %s", user.id)
                raise ApiError(ErrorCode.ACCOUNT_DISABLED)

            user_id = user.id
            access_token = self.access_tokens.issue(user_id, user.role)
            session = self.sessions.issue(
                db,
                user_id,
                remember_me,
                user_agent=user_agent,
                ip_address=ip_address,
            )
            user.record_login(self.clock.now())
            logger.info("User %s logged in (remember_me=%s)", user_id, remember_me)
        return LoginResult(access_token=access_token, session=session, user_id=user_id)

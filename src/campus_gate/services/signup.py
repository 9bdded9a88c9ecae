"""Account creation for members whose campus email has been verified."""

from __future__ import annotations

import logging
import re

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_gate.core import security
from campus_gate.core.errors import ApiError, ErrorCode
from campus_gate.db.time import Clock, SystemClock
from campus_gate.db.unit_of_work import unit_of_work
from campus_gate.models.email_otp import OtpPurpose
from campus_gate.models.user import User, UserRole, UserStatus
from campus_gate.repositories.user_repo import UserRepository
from campus_gate.services.otp import OtpPolicyEngine

logger = logging.getLogger(__name__)

__all__ = ["SignupService", "PASSWORD_PATTERN", "NICKNAME_PATTERN"]

# 9-15 non-blank characters containing a letter, a digit and a symbol.
PASSWORD_PATTERN = re.compile(r"^(?=.*[A-Za-z])(?=.*\d)(?=.*[^A-Za-z0-9\s])\S{9,15}$")
NICKNAME_PATTERN = re.compile(r"^[A-Za-z0-9가-힣_]{2,20}$")


class SignupService:
    """Turn a verified sign-up challenge into a member account."""

    def __init__(self, otp_engine: OtpPolicyEngine, clock: Clock | None = None) -> None:
        self.otp_engine = otp_engine
        self.clock = clock or SystemClock()

    def complete_signup(
        self,
        db: Session,
        *,
        email: str,
        password: str,
        password_confirm: str,
        nickname: str,
    ) -> User:
        """Create the account and consume the challenge in one unit of work.

        Raises:
            ApiError: ``EMAIL_DOMAIN_NOT_ALLOWED``, ``PASSWORD_MISMATCH``,
                ``WEAK_PASSWORD``, ``INVALID_NICKNAME``, ``OTP_NOT_FOUND``,
                ``OTP_NOT_VERIFIED``, ``OTP_EXPIRED``, ``EMAIL_ALREADY_EXISTS``
                or ``NICKNAME_ALREADY_EXISTS``.
        """
        normalized = self.otp_engine.domain_policy.require(email)
        nickname = (nickname or "").strip()
        if password != password_confirm:
            raise ApiError(ErrorCode.PASSWORD_MISMATCH)
        if not PASSWORD_PATTERN.fullmatch(password or ""):
            raise ApiError(ErrorCode.WEAK_PASSWORD)
        if not NICKNAME_PATTERN.fullmatch(nickname):
            raise ApiError(ErrorCode.INVALID_NICKNAME)

        password_hash = security.hash_password(password)
        with unit_of_work(db):
            challenge = self.otp_engine.require_verified(db, normalized, OtpPurpose.SIGNUP)
            users = UserRepository(db)
            self._ensure_available(users, normalized, nickname)

            user = User(
                email=normalized,
                password_hash=password_hash,
                nickname=nickname,
                role=UserRole.USER,
                status=UserStatus.ACTIVE,
                created_at=self.clock.now(),
            )
            try:
                with db.begin_nested():
                    users.add(user)
            except IntegrityError as exc:
                self._ensure_available(users, normalized, nickname)
                raise ApiError(ErrorCode.STORE_UNAVAILABLE) from exc

            self.otp_engine.consume(db, challenge)
            logger.info("Created account %s for %s", user.id, normalized)
        return user

    @staticmethod
    def _ensure_available(users: UserRepository, email: str, nickname: str) -> None:
        if users.email_exists(email):
            raise ApiError(ErrorCode.EMAIL_ALREADY_EXISTS)
        if users.nickname_exists(nickname):
            raise ApiError(ErrorCode.NICKNAME_ALREADY_EXISTS)

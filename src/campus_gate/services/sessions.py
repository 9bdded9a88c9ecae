"""Refresh-token sessions: issue, rotate, revoke, and reuse detection.

Session secrets are random, handed to the client once, and stored only as a
keyed hash. Each rotation revokes the presented token with reason
``ROTATED`` and issues a replacement. A rotated token presented again is
treated as theft or replay, never as a retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from campus_gate.core.errors import ApiError, ErrorCode
from campus_gate.core.security import AccessTokenService
from campus_gate.core.settings import Settings
from campus_gate.db.locking import KeyedLockStore
from campus_gate.db.time import Clock, SystemClock
from campus_gate.db.unit_of_work import unit_of_work
from campus_gate.models.refresh_token import RefreshToken, RevokeReason
from campus_gate.repositories.refresh_token_repo import RefreshTokenRepository
from campus_gate.repositories.user_repo import UserRepository
from campus_gate.utils.hash import generate_session_secret, hmac_sha256_hex

logger = logging.getLogger(__name__)

__all__ = ["IssuedSession", "RefreshSessionEngine", "RotationResult"]


@dataclass(frozen=True)
class IssuedSession:
    """A freshly issued session. ``secret`` is not retrievable again."""

    secret: str = field(repr=False)
    expires_at: datetime
    remember_me: bool
    ttl_seconds: int


@dataclass(frozen=True)
class RotationResult:
    access_token: str = field(repr=False)
    session: IssuedSession
    user_id: int


class RefreshSessionEngine:
    """Own the lifecycle of refresh-token sessions."""

    def __init__(
        self,
        *,
        hash_secret: str,
        remember_me_ttl: timedelta,
        session_ttl: timedelta,
        lock_store: KeyedLockStore,
        access_tokens: AccessTokenService,
        clock: Clock | None = None,
    ) -> None:
        self._hash_secret = hash_secret
        self.remember_me_ttl = remember_me_ttl
        self.session_ttl = session_ttl
        self.lock_store = lock_store
        self.access_tokens = access_tokens
        self.clock = clock or SystemClock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        lock_store: KeyedLockStore,
        access_tokens: AccessTokenService,
        clock: Clock | None = None,
    ) -> RefreshSessionEngine:
        return cls(
            hash_secret=settings.refresh_hash_secret,
            remember_me_ttl=timedelta(seconds=settings.refresh_remember_me_seconds),
            session_ttl=timedelta(seconds=settings.refresh_session_ttl_seconds),
            lock_store=lock_store,
            access_tokens=access_tokens,
            clock=clock,
        )

    def hash_secret(self, secret: str) -> str:
        return hmac_sha256_hex(self._hash_secret, secret)

    def ttl_for(self, remember_me: bool) -> timedelta:
        return self.remember_me_ttl if remember_me else self.session_ttl

    def issue(
        self,
        db: Session,
        user_id: int,
        remember_me: bool,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> IssuedSession:
        """Persist a new session for ``user_id`` and return its secret once."""
        ttl = self.ttl_for(remember_me)
        with unit_of_work(db):
            now = self.clock.now()
            expires_at = now + ttl
            secret = generate_session_secret()
            token = RefreshToken.issue(
                user_id=user_id,
                token_hash=self.hash_secret(secret),
                remember_me=remember_me,
                expires_at=expires_at,
                now=now,
                user_agent=user_agent,
                ip_address=ip_address,
            )
            RefreshTokenRepository(db, self.lock_store).add(token)
            logger.info("Issued session %s for user %s", token.id, user_id)
        return IssuedSession(
            secret=secret,
            expires_at=expires_at,
            remember_me=remember_me,
            ttl_seconds=int(ttl.total_seconds()),
        )

    def rotate(
        self,
        db: Session,
        old_secret: str | None,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RotationResult:
        """Exchange ``old_secret`` for a new session and access token.

        The replacement keeps the remember-me policy of the presented session.

        Raises:
            ApiError: ``REFRESH_INVALID``, ``REFRESH_REUSED``, ``REFRESH_REVOKED``
                or ``REFRESH_EXPIRED``. All four render identically to clients.
        """
        if not old_secret or not old_secret.strip():
            raise ApiError(ErrorCode.REFRESH_INVALID)

        with unit_of_work(db):
            now = self.clock.now()
            token = RefreshTokenRepository(db, self.lock_store).find_for_update(
                self.hash_secret(old_secret)
            )
            if token is None:
                raise ApiError(ErrorCode.REFRESH_INVALID)
            if token.is_rotated:
                logger.warning(
                    "Rotated session %s presented again for user %s; possible token theft",
                    token.id,
                    token.user_id,
                )
                raise ApiError(ErrorCode.REFRESH_REUSED)
            if token.is_revoked:
                logger.info("Revoked session %s presented for user %s", token.id, token.user_id)
                raise ApiError(ErrorCode.REFRESH_REVOKED)
            if token.is_expired(now):
                raise ApiError(ErrorCode.REFRESH_EXPIRED)

            user = UserRepository(db).get_by_id(token.user_id)
            if user is None:
                logger.info("Session %s belongs to a deleted user", token.id)
                raise ApiError(ErrorCode.REFRESH_INVALID)

            user_id = user.id
            token.touch(now)
            token.revoke(RevokeReason.ROTATED, now)
            issued = self.issue(
                db,
                user_id,
                token.remember_me,
                user_agent=user_agent,
                ip_address=ip_address,
            )
            access_token = self.access_tokens.issue(user_id, user.role)
            logger.info("Rotated session %s for user %s", token.id, user_id)
        return RotationResult(access_token=access_token, session=issued, user_id=user_id)

    def revoke_if_present(
        self,
        db: Session,
        secret: str | None,
        reason: RevokeReason = RevokeReason.LOGOUT,
    ) -> None:
        """Revoke the session for ``secret`` if there is one; unknown secrets are ignored."""
        if not secret or not secret.strip():
            return
        with unit_of_work(db):
            token = RefreshTokenRepository(db, self.lock_store).find_for_update(
                self.hash_secret(secret)
            )
            if token is None:
                return
            now = self.clock.now()
            token.touch(now)
            if token.revoke(reason, now):
                logger.info("Revoked session %s for user %s (%s)", token.id, token.user_id, reason.value)

    def revoke_all(
        self,
        db: Session,
        user_id: int,
        reason: RevokeReason = RevokeReason.LOGOUT,
    ) -> int:
        """Revoke every active session of ``user_id`` and return how many were revoked."""
        with unit_of_work(db):
            now = self.clock.now()
            tokens = RefreshTokenRepository(db, self.lock_store).lock_active_for_user(user_id, now)
            revoked = sum(1 for token in tokens if token.revoke(reason, now))
            logger.info("Revoked %d sessions for user %s (%s)", revoked, user_id, reason.value)
        return revoked

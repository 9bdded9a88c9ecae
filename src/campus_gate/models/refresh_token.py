# src/campus_gate/models/refresh_token.py
"""Refresh-token records backing long-lived login sessions."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, Enum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from campus_gate.db.session import Base
from campus_gate.db.types import BigIntId, UTCDateTime

TOKEN_HASH_LENGTH = 64
USER_AGENT_MAX_LENGTH = 255
IP_ADDRESS_MAX_LENGTH = 45


class RevokeReason(str, enum.Enum):
    ROTATED = "ROTATED"
    LOGOUT = "LOGOUT"


class RefreshToken(Base):
    """One issued session. Rows are revoked, never deleted."""

    __tablename__ = "refresh_tokens"
    __table_args__ = (
        Index("ux_refresh_tokens_token_hash", "token_hash", unique=True),
        Index("idx_refresh_tokens_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    token_hash: Mapped[str] = mapped_column(String(TOKEN_HASH_LENGTH), nullable=False)
    remember_me: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    revoke_reason: Mapped[RevokeReason | None] = mapped_column(
        Enum(RevokeReason, name="revoke_reason", native_enum=False, length=16),
        nullable=True,
    )
    user_agent: Mapped[str | None] = mapped_column(String(USER_AGENT_MAX_LENGTH), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(IP_ADDRESS_MAX_LENGTH), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    @classmethod
    def issue(
        cls,
        *,
        user_id: int,
        token_hash: str,
        remember_me: bool,
        expires_at: datetime,
        now: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RefreshToken:
        if len(token_hash) != TOKEN_HASH_LENGTH:
            raise ValueError("token_hash must be a 64 character hex digest")
        if not expires_at > now:
            raise ValueError("expires_at must be in the future")
        return cls(
            user_id=user_id,
            token_hash=token_hash,
            remember_me=remember_me,
            expires_at=expires_at,
            last_used_at=None,
            revoked_at=None,
            revoke_reason=None,
            user_agent=_truncate(user_agent, USER_AGENT_MAX_LENGTH),
            ip_address=_truncate(ip_address, IP_ADDRESS_MAX_LENGTH),
            created_at=now,
        )

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def is_rotated(self) -> bool:
        return self.revoke_reason == RevokeReason.ROTATED

    def is_expired(self, now: datetime) -> bool:
        return not self.expires_at > now

    def touch(self, now: datetime) -> None:
        self.last_used_at = now

    def revoke(self, reason: RevokeReason, now: datetime) -> bool:
        """Revoke once; return False when the row was already revoked."""
        if self.is_revoked:
            return False
        self.revoked_at = now
        self.revoke_reason = reason
        return True


def _truncate(value: str | None, limit: int) -> str | None:
    if not value:
        return None
    return value[:limit]

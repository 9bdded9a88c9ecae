# src/campus_gate/models/email_otp.py
"""One-time passcode challenges sent to campus email addresses."""

from __future__ import annotations

import enum
from datetime import date, datetime, timedelta

from sqlalchemy import Date, Enum, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from campus_gate.db.session import Base
from campus_gate.db.types import BigIntId, UTCDateTime

CODE_HASH_LENGTH = 64


class OtpPurpose(str, enum.Enum):
    """What a verified challenge may be used for."""

    SIGNUP = "SIGNUP"
    PASSWORD_RESET = "PASSWORD_RESET"


class EmailOtp(Base):
    """The current passcode challenge for one (email, purpose) pair.

    A single row per pair is reused across reissues; only the keyed hash of
    the code is stored.
    """

    __tablename__ = "email_otp"
    __table_args__ = (
        UniqueConstraint("email", "purpose", name="uq_email_otp_email_purpose"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[OtpPurpose] = mapped_column(
        Enum(OtpPurpose, name="otp_purpose", native_enum=False, length=32),
        nullable=False,
    )
    code_hash: Mapped[str] = mapped_column(String(CODE_HASH_LENGTH), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failed_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_sent_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    resend_available_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    send_count_date: Mapped[date] = mapped_column(Date, nullable=False)
    send_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @classmethod
    def create(
        cls,
        *,
        email: str,
        purpose: OtpPurpose,
        code_hash: str,
        now: datetime,
        ttl: timedelta,
        cooldown: timedelta,
        quota_date: date,
    ) -> EmailOtp:
        """Build the first challenge for a pair; it counts as today's first send."""
        return cls(
            email=email,
            purpose=purpose,
            code_hash=code_hash,
            expires_at=now + ttl,
            verified_at=None,
            failed_attempts=0,
            last_sent_at=now,
            resend_available_at=now + cooldown,
            send_count_date=quota_date,
            send_count=1,
        )

    def reissue(
        self,
        *,
        code_hash: str,
        now: datetime,
        ttl: timedelta,
        cooldown: timedelta,
        quota_date: date,
    ) -> None:
        """Replace the code and restart verification, counting one more send."""
        self.code_hash = code_hash
        self.expires_at = now + ttl
        self.verified_at = None
        self.failed_attempts = 0
        if self.send_count_date != quota_date:
            self.send_count_date = quota_date
            self.send_count = 0
        self.send_count += 1
        self.last_sent_at = now
        self.resend_available_at = now + cooldown

    @property
    def is_verified(self) -> bool:
        return self.verified_at is not None

    def is_expired(self, now: datetime) -> bool:
        return not self.expires_at > now

    def sends_on(self, quota_date: date) -> int:
        """Return the send count for ``quota_date``; a stale window counts as zero."""
        if self.send_count_date != quota_date:
            return 0
        return self.send_count

    def register_failure(self) -> int:
        self.failed_attempts += 1
        return self.failed_attempts

    def mark_verified(self, now: datetime) -> None:
        self.verified_at = now

"""Issuance and verification policy for email passcodes.

Each (email, purpose) pair owns one :class:`EmailOtp` row. Every operation
locks that row's key, applies the policy and commits in a single unit of
work, so concurrent requests for the same address are processed one at a
time. The very first request for a pair has no row to lock; a concurrent
loser of that insert hits the unique constraint and replays the policy once
against the winner's row.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from functools import partial
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_gate.core.email_policy import EmailDomainPolicy
from campus_gate.core.errors import ApiError, ErrorCode, InvalidOtpCode
from campus_gate.core.settings import Settings
from campus_gate.db.locking import KeyedLockStore
from campus_gate.db.time import Clock, SystemClock
from campus_gate.db.unit_of_work import on_commit, unit_of_work
from campus_gate.models.email_otp import EmailOtp, OtpPurpose
from campus_gate.repositories.otp_repo import EmailOtpRepository
from campus_gate.services.mail import CodeIssued, MailSender
from campus_gate.utils.hash import constant_time_equals, generate_otp_code, hmac_sha256_hex

logger = logging.getLogger(__name__)

__all__ = ["OtpPolicy", "OtpPolicyEngine"]


@dataclass(frozen=True)
class OtpPolicy:
    """Tunable windows and limits for passcode challenges."""

    ttl: timedelta = timedelta(minutes=10)
    max_failures: int = 5
    resend_cooldown: timedelta = timedelta(seconds=20)
    daily_send_limit: int = 5
    quota_timezone: ZoneInfo = ZoneInfo("UTC")

    @classmethod
    def from_settings(cls, settings: Settings) -> OtpPolicy:
        return cls(
            ttl=timedelta(minutes=settings.otp_ttl_minutes),
            max_failures=settings.otp_max_failures,
            resend_cooldown=timedelta(seconds=settings.otp_resend_cooldown_seconds),
            daily_send_limit=settings.otp_daily_send_limit,
            quota_timezone=ZoneInfo(settings.otp_quota_timezone),
        )

    @property
    def ttl_minutes(self) -> int:
        return max(1, int(self.ttl.total_seconds() // 60))

    def quota_date(self, now: datetime) -> date:
        """Return the calendar day ``now`` falls on for daily quota purposes."""
        return now.astimezone(self.quota_timezone).date()

    def next_quota_day_starts_at(self, now: datetime) -> datetime:
        next_day = self.quota_date(now) + timedelta(days=1)
        return datetime.combine(next_day, time.min, tzinfo=self.quota_timezone)


class OtpPolicyEngine:
    """Own the lifecycle of passcode challenges."""

    def __init__(
        self,
        *,
        policy: OtpPolicy,
        hmac_secret: str,
        domain_policy: EmailDomainPolicy,
        lock_store: KeyedLockStore,
        mail_sender: MailSender,
        clock: Clock | None = None,
        code_generator: Callable[[], str] = generate_otp_code,
    ) -> None:
        self.policy = policy
        self._hmac_secret = hmac_secret
        self.domain_policy = domain_policy
        self.lock_store = lock_store
        self.mail_sender = mail_sender
        self.clock = clock or SystemClock()
        self._generate_code = code_generator

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        lock_store: KeyedLockStore,
        mail_sender: MailSender,
        clock: Clock | None = None,
    ) -> OtpPolicyEngine:
        return cls(
            policy=OtpPolicy.from_settings(settings),
            hmac_secret=settings.otp_hmac_secret,
            domain_policy=EmailDomainPolicy(settings.allowed_email_domain),
            lock_store=lock_store,
            mail_sender=mail_sender,
            clock=clock,
        )

    def hash_code(self, code: str) -> str:
        return hmac_sha256_hex(self._hmac_secret, code)

    def request_challenge(
        self,
        db: Session,
        email: str,
        purpose: OtpPurpose = OtpPurpose.SIGNUP,
    ) -> None:
        """Issue a fresh code for (email, purpose) and mail it once committed.

        Raises:
            ApiError: ``EMAIL_DOMAIN_NOT_ALLOWED``, ``OTP_ALREADY_VERIFIED``,
                ``OTP_DAILY_LIMIT`` or ``OTP_COOLDOWN``; the throttling codes
                carry ``retry_after_seconds``.
        """
        normalized = self.domain_policy.require(email)
        with unit_of_work(db):
            repo = EmailOtpRepository(db, self.lock_store)
            now = self.clock.now()
            code = self._generate_code()
            code_hash = self.hash_code(code)

            challenge = repo.find_for_update(normalized, purpose)
            if challenge is None:
                challenge = self._create_or_replay(repo, normalized, purpose, code_hash, now)
            else:
                self._ensure_reissue_allowed(challenge, now)
                self._reissue(challenge, code_hash, now)

            event = CodeIssued(
                email=normalized,
                purpose=purpose,
                code=code,
                ttl_minutes=self.policy.ttl_minutes,
            )
            on_commit(db, partial(self.mail_sender.deliver, event))
            logger.info(
                "Issued %s code for %s (send %d today)",
                purpose.value,
                normalized,
                challenge.send_count,
            )

    def verify_challenge(
        self,
        db: Session,
        email: str,
        code: str,
        purpose: OtpPurpose = OtpPurpose.SIGNUP,
    ) -> None:
        """Check ``code`` against the live challenge.

        A challenge that is already verified accepts any call without change.
        A wrong code increments the failure counter, which is committed even
        though ``OTP_INVALID`` is raised.

        Raises:
            ApiError: ``OTP_NOT_FOUND``, ``OTP_EXPIRED``, ``OTP_TOO_MANY_FAILURES``
                or ``OTP_INVALID``.
        """
        normalized = self.domain_policy.require(email)
        with unit_of_work(db, commit_on=(InvalidOtpCode,)):
            repo = EmailOtpRepository(db, self.lock_store)
            now = self.clock.now()
            challenge = repo.find_for_update(normalized, purpose)
            if challenge is None:
                raise ApiError(ErrorCode.OTP_NOT_FOUND)
            if challenge.is_verified:
                return
            if challenge.is_expired(now):
                raise ApiError(ErrorCode.OTP_EXPIRED)
            if challenge.failed_attempts >= self.policy.max_failures:
                logger.warning("Locked out %s code for %s", purpose.value, normalized)
                raise ApiError(ErrorCode.OTP_TOO_MANY_FAILURES)

            if not constant_time_equals(self.hash_code(code or ""), challenge.code_hash):
                failures = challenge.register_failure()
                logger.info(
                    "Wrong %s code for %s (%d/%d)",
                    purpose.value,
                    normalized,
                    failures,
                    self.policy.max_failures,
                )
                raise InvalidOtpCode()

            challenge.mark_verified(now)
            logger.info("Verified %s code for %s", purpose.value, normalized)

    def require_verified(
        self,
        db: Session,
        email: str,
        purpose: OtpPurpose = OtpPurpose.SIGNUP,
    ) -> EmailOtp:
        """Lock and return a verified, unexpired challenge for the caller's unit of work.

        ``email`` must already be normalized.
        """
        repo = EmailOtpRepository(db, self.lock_store)
        challenge = repo.find_for_update(email, purpose)
        if challenge is None:
            raise ApiError(ErrorCode.OTP_NOT_FOUND)
        if not challenge.is_verified:
            raise ApiError(ErrorCode.OTP_NOT_VERIFIED)
        if challenge.is_expired(self.clock.now()):
            raise ApiError(ErrorCode.OTP_EXPIRED)
        return challenge

    def consume(self, db: Session, challenge: EmailOtp) -> None:
        """Delete a challenge once the flow it verified has completed."""
        EmailOtpRepository(db, self.lock_store).delete(challenge)

    def _create_or_replay(
        self,
        repo: EmailOtpRepository,
        email: str,
        purpose: OtpPurpose,
        code_hash: str,
        now: datetime,
    ) -> EmailOtp:
        challenge = EmailOtp.create(
            email=email,
            purpose=purpose,
            code_hash=code_hash,
            now=now,
            ttl=self.policy.ttl,
            cooldown=self.policy.resend_cooldown,
            quota_date=self.policy.quota_date(now),
        )
        try:
            with repo.session.begin_nested():
                repo.add(challenge)
            return challenge
        except IntegrityError as exc:
            logger.info("Lost first-request race for %s %s; replaying policy", purpose.value, email)
            existing = repo.find_for_update(email, purpose)
            if existing is None:
                raise ApiError(ErrorCode.STORE_UNAVAILABLE) from exc
            self._ensure_reissue_allowed(existing, now)
            self._reissue(existing, code_hash, now)
            return existing

    def _ensure_reissue_allowed(self, challenge: EmailOtp, now: datetime) -> None:
        if challenge.is_verified and not challenge.is_expired(now):
            raise ApiError(ErrorCode.OTP_ALREADY_VERIFIED)

        if challenge.sends_on(self.policy.quota_date(now)) >= self.policy.daily_send_limit:
            reset_at = self.policy.next_quota_day_starts_at(now)
            raise ApiError(
                ErrorCode.OTP_DAILY_LIMIT,
                retry_after_seconds=_seconds_until(now, reset_at),
            )

        if challenge.resend_available_at > now:
            raise ApiError(
                ErrorCode.OTP_COOLDOWN,
                retry_after_seconds=_seconds_until(now, challenge.resend_available_at),
            )

    def _reissue(self, challenge: EmailOtp, code_hash: str, now: datetime) -> None:
        challenge.reissue(
            code_hash=code_hash,
            now=now,
            ttl=self.policy.ttl,
            cooldown=self.policy.resend_cooldown,
            quota_date=self.policy.quota_date(now),
        )


def _seconds_until(now: datetime, moment: datetime) -> int:
    return max(1, math.ceil((moment - now).total_seconds()))

"""Data access helpers for email passcode challenges."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_gate.db.locking import KeyedLockStore
from campus_gate.models.email_otp import EmailOtp, OtpPurpose

__all__ = ["EmailOtpRepository", "challenge_lock_key"]


def challenge_lock_key(email: str, purpose: OtpPurpose) -> str:
    return f"email_otp:{purpose.value}:{email}"


class EmailOtpRepository:
    """Thin wrapper around database access for passcode challenges."""

    def __init__(self, session: Session, lock_store: KeyedLockStore) -> None:
        self.session = session
        self.lock_store = lock_store

    def find_for_update(self, email: str, purpose: OtpPurpose) -> EmailOtp | None:
        """Return the challenge for (email, purpose) with its key held for the transaction."""
        stmt = select(EmailOtp).where(EmailOtp.email == email, EmailOtp.purpose == purpose)
        return self.lock_store.fetch_locked(
            self.session,
            stmt,
            key=challenge_lock_key(email, purpose),
        )

    def add(self, challenge: EmailOtp) -> EmailOtp:
        self.session.add(challenge)
        self.session.flush()
        return challenge

    def delete(self, challenge: EmailOtp) -> None:
        self.session.delete(challenge)
        self.session.flush()

"""Data access helpers for refresh-token sessions."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_gate.db.locking import KeyedLockStore
from campus_gate.models.refresh_token import RefreshToken

__all__ = ["RefreshTokenRepository", "token_lock_key"]


def token_lock_key(token_hash: str) -> str:
    return f"refresh_token:{token_hash}"


class RefreshTokenRepository:
    """Thin wrapper around database access for refresh tokens."""

    def __init__(self, session: Session, lock_store: KeyedLockStore) -> None:
        self.session = session
        self.lock_store = lock_store

    def find_for_update(self, token_hash: str) -> RefreshToken | None:
        """Return the token with ``token_hash``, held exclusively for the transaction."""
        stmt = select(RefreshToken).where(RefreshToken.token_hash == token_hash)
        return self.lock_store.fetch_locked(self.session, stmt, key=token_lock_key(token_hash))

    def lock_active_for_user(self, user_id: int, now: datetime) -> list[RefreshToken]:
        """Return the user's unrevoked, unexpired tokens, each held for the transaction."""
        stmt = (
            select(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.id)
        )
        return self.lock_store.fetch_all_locked(
            self.session,
            stmt,
            key_of=lambda token: token_lock_key(token.token_hash),
        )

    def add(self, token: RefreshToken) -> RefreshToken:
        self.session.add(token)
        self.session.flush()
        return token

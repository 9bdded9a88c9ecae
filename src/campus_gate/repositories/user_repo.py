"""Data access helpers for member accounts."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_gate.models.user import User

__all__ = ["UserRepository"]


class UserRepository:
    """Thin wrapper around database access for users."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_id(self, user_id: int) -> User | None:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> User | None:
        return self.session.scalars(select(User).where(User.email == email)).first()

    def email_exists(self, email: str) -> bool:
        return self.session.scalar(select(User.id).where(User.email == email).limit(1)) is not None

    def nickname_exists(self, nickname: str) -> bool:
        return (
            self.session.scalar(select(User.id).where(User.nickname == nickname).limit(1))
            is not None
        )

    def add(self, user: User) -> User:
        self.session.add(user)
        self.session.flush()
        return user

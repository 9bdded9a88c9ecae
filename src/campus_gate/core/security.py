"""Password hashing and access-token signing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Any

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError
from jose import JWTError, jwt

from campus_gate.core.settings import Settings
from campus_gate.db.time import Clock, SystemClock
from campus_gate.models.user import UserRole

_password_hasher = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    """Return an argon2id hash of ``password``."""
    return _password_hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    """Return True if ``password`` matches ``password_hash``."""
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


@lru_cache(maxsize=1)
def dummy_password_hash() -> str:
    """Hash verified for unknown accounts so both login paths cost the same."""
    return _password_hasher.hash("campus-gate-unknown-account")


class InvalidAccessToken(Exception):
    """Raised when an access token fails signature, issuer, or expiry checks."""


@dataclass(frozen=True)
class AccessPrincipal:
    """Identity carried by a verified access token."""

    user_id: int
    role: UserRole


class AccessTokenService:
    """Mint and verify short-lived HS256 access tokens."""

    def __init__(
        self,
        *,
        secret: str,
        issuer: str,
        ttl_seconds: int,
        algorithm: str = "HS256",
        clock: Clock | None = None,
    ) -> None:
        self._secret = secret
        self.issuer = issuer
        self.ttl = timedelta(seconds=ttl_seconds)
        self.algorithm = algorithm
        self._clock = clock or SystemClock()

    @classmethod
    def from_settings(cls, settings: Settings, *, clock: Clock | None = None) -> AccessTokenService:
        return cls(
            secret=settings.jwt_secret,
            issuer=settings.jwt_issuer,
            ttl_seconds=settings.access_token_ttl_seconds,
            algorithm=settings.jwt_algorithm,
            clock=clock,
        )

    def issue(self, user_id: int, role: UserRole) -> str:
        """Return a signed token for ``user_id`` carrying ``role``."""
        now = self._clock.now()
        payload: dict[str, Any] = {
            "iss": self.issuer,
            "sub": str(user_id),
            "role": role.value,
            "iat": int(now.timestamp()),
            "exp": int((now + self.ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> AccessPrincipal:
        """Return the principal in ``token``.

        Expiry is checked against the injected clock rather than the library's
        wall clock.

        Raises:
            InvalidAccessToken: If the token is malformed, forged, from another
                issuer, or expired.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"verify_exp": False},
            )
        except JWTError as err:
            raise InvalidAccessToken("Could not validate credentials") from err

        expires_at = claims.get("exp")
        if not isinstance(expires_at, int) or expires_at <= self._clock.now().timestamp():
            raise InvalidAccessToken("Access token has expired")
        try:
            return AccessPrincipal(user_id=int(claims["sub"]), role=UserRole(claims["role"]))
        except (KeyError, TypeError, ValueError) as err:
            raise InvalidAccessToken("Access token claims are malformed") from err

"""Keyed hashing and random secret helpers.

Passcodes and session secrets are only ever persisted as HMAC-SHA256 digests
keyed with a server-side secret, so a leaked table cannot be brute-forced
offline without the key as well.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

OTP_CODE_DIGITS = 6
SESSION_SECRET_BYTES = 48


def hmac_sha256_hex(secret: str, value: str) -> str:
    """Return the lowercase hex HMAC-SHA256 of ``value`` under ``secret``."""
    return hmac.new(secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()


def constant_time_equals(left: str, right: str) -> bool:
    """Compare two digests without leaking the position of the first difference."""
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def generate_otp_code(digits: int = OTP_CODE_DIGITS) -> str:
    """Return a uniformly random, zero-padded numeric code."""
    return str(secrets.randbelow(10**digits)).zfill(digits)


def generate_session_secret() -> str:
    """Return a URL-safe session secret encoding 48 random bytes, without padding."""
    return secrets.token_urlsafe(SESSION_SECRET_BYTES)

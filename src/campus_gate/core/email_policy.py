"""Campus email normalization and domain checks."""

from __future__ import annotations

from campus_gate.core.errors import ApiError, ErrorCode


def normalize_email(email: str | None) -> str:
    """Return ``email`` trimmed and lower-cased."""
    return (email or "").strip().lower()


class EmailDomainPolicy:
    """Admit only addresses under a single institutional domain."""

    def __init__(self, allowed_domain: str) -> None:
        self.allowed_domain = allowed_domain.strip().lower().lstrip("@")
        self._suffix = f"@{self.allowed_domain}"

    def is_allowed(self, normalized_email: str) -> bool:
        local_part, _, _ = normalized_email.rpartition(self._suffix)
        return normalized_email.endswith(self._suffix) and bool(local_part) and "@" not in local_part

    def require(self, email: str | None) -> str:
        """Return the normalized address or raise ``EMAIL_DOMAIN_NOT_ALLOWED``."""
        normalized = normalize_email(email)
        if not self.is_allowed(normalized):
            raise ApiError(ErrorCode.EMAIL_DOMAIN_NOT_ALLOWED)
        return normalized

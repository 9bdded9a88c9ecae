"""Refresh-session cookie helpers."""

from __future__ import annotations

from fastapi import Request, Response

from campus_gate.core.settings import Settings
from campus_gate.services.sessions import IssuedSession


def read_refresh_cookie(request: Request, settings: Settings) -> str | None:
    return request.cookies.get(settings.refresh_cookie_name)


def set_refresh_cookie(response: Response, session: IssuedSession, settings: Settings) -> None:
    """Attach the session secret; Max-Age follows the session's TTL policy."""
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=session.secret,
        max_age=session.ttl_seconds,
        path=settings.refresh_cookie_path,
        secure=settings.refresh_cookie_secure,
        httponly=True,
        samesite=settings.refresh_cookie_samesite,
    )


def clear_refresh_cookie(response: Response, settings: Settings) -> None:
    """Expire the cookie using the same attributes it was set with."""
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value="",
        max_age=0,
        path=settings.refresh_cookie_path,
        secure=settings.refresh_cookie_secure,
        httponly=True,
        samesite=settings.refresh_cookie_samesite,
    )

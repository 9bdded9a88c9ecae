# tests/v1/test_auth.py
"""End-to-end tests for the authentication endpoints."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from campus_gate.models import UserRole, UserStatus
from campus_gate.services.otp import OtpPolicyEngine
from tests.conftest import CAMPUS_DOMAIN, STRONG_PASSWORD, ManualClock, RecordingMailSender, make_user

API = "/api/v1/auth"
EMAIL = f"newcomer@{CAMPUS_DOMAIN}"
COOKIE = "KG_REFRESH"


def _signup(client: TestClient, mail_sender: RecordingMailSender, email: str = EMAIL) -> dict[str, Any]:
    assert client.post(f"{API}/signup/otp/request", json={"email": email}).status_code == 204
    code = mail_sender.last_code(email)
    assert client.post(f"{API}/signup/otp/verify", json={"email": email, "code": code}).status_code == 204
    response = client.post(
        f"{API}/signup/complete",
        json={
            "email": email,
            "password": STRONG_PASSWORD,
            "password_confirm": STRONG_PASSWORD,
            "nickname": "newcomer",
        },
    )
    assert response.status_code == 201
    return response.json()


def _login(client: TestClient, remember_me: bool = False, email: str = EMAIL):
    return client.post(
        f"{API}/login",
        json={"email": email, "password": STRONG_PASSWORD, "remember_me": remember_me},
    )


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestSignupFlow:
    def test_full_signup_then_me(
        self, client: TestClient, mail_sender: RecordingMailSender
    ) -> None:
        created = _signup(client, mail_sender)
        assert created["email"] == EMAIL
        assert created["nickname"] == "newcomer"
        assert created["role"] == UserRole.USER.value

        login = _login(client)
        assert login.status_code == 200
        body = login.json()
        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == 900

        me = client.get(f"{API}/me", headers=_bearer(body["access_token"]))
        assert me.status_code == 200
        assert me.json() == created

    def test_cooldown_sets_retry_after(self, client: TestClient) -> None:
        assert client.post(f"{API}/signup/otp/request", json={"email": EMAIL}).status_code == 204

        response = client.post(f"{API}/signup/otp/request", json={"email": EMAIL})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "20"
        assert response.json() == {
            "code": "OTP_COOLDOWN",
            "message": "Please wait before requesting another code.",
            "retry_after_seconds": 20,
            "details": {},
        }

    def test_foreign_domain(self, client: TestClient) -> None:
        response = client.post(f"{API}/signup/otp/request", json={"email": "someone@gmail.com"})
        assert response.status_code == 400
        assert response.json()["code"] == "EMAIL_DOMAIN_NOT_ALLOWED"

    def test_wrong_code(self, client: TestClient, mail_sender: RecordingMailSender) -> None:
        client.post(f"{API}/signup/otp/request", json={"email": EMAIL})
        wrong = "000000" if mail_sender.last_code(EMAIL) != "000000" else "111111"

        response = client.post(f"{API}/signup/otp/verify", json={"email": EMAIL, "code": wrong})

        assert response.status_code == 400
        assert response.json()["code"] == "OTP_INVALID"

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"email": "not-an-email"},
            {"email": "a..b@kyonggi.ac.kr", "code": "123456"},
            {"email": EMAIL, "code": "12ab56"},
        ],
    )
    def test_malformed_body_is_validation_error(
        self, client: TestClient, payload: dict[str, str]
    ) -> None:
        response = client.post(f"{API}/signup/otp/verify", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["errors"]
        assert {"loc", "msg", "type"} <= set(body["details"]["errors"][0])

    def test_complete_without_verification(self, client: TestClient) -> None:
        client.post(f"{API}/signup/otp/request", json={"email": EMAIL})
        response = client.post(
            f"{API}/signup/complete",
            json={
                "email": EMAIL,
                "password": STRONG_PASSWORD,
                "password_confirm": STRONG_PASSWORD,
                "nickname": "newcomer",
            },
        )
        assert response.status_code == 400
        assert response.json()["code"] == "OTP_NOT_VERIFIED"


class TestSessions:
    @pytest.fixture(autouse=True)
    def _member(self, db_session: Session, clock: ManualClock) -> None:
        make_user(db_session, clock, email=EMAIL, nickname="newcomer")

    def test_login_sets_refresh_cookie(self, client: TestClient) -> None:
        response = _login(client)

        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"{COOKIE}=")
        assert "HttpOnly" in cookie
        assert "Path=/api/v1/auth" in cookie
        assert "Max-Age=86400" in cookie
        assert "SameSite=lax" in cookie
        assert "Secure" not in cookie

    def test_remember_me_cookie_lasts_a_week(self, client: TestClient) -> None:
        response = _login(client, remember_me=True)
        assert "Max-Age=604800" in response.headers["set-cookie"]

    def test_bad_password(self, client: TestClient) -> None:
        response = client.post(f"{API}/login", json={"email": EMAIL, "password": "nope!nope1"})
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_CREDENTIALS"

    def test_refresh_rotates_cookie_and_detects_reuse(
        self, client: TestClient, clock: ManualClock
    ) -> None:
        _login(client, remember_me=True)
        original = client.cookies[COOKIE]
        clock.advance(minutes=30)

        refreshed = client.post(f"{API}/refresh")

        assert refreshed.status_code == 200
        assert "Max-Age=604800" in refreshed.headers["set-cookie"]
        rotated = client.cookies[COOKIE]
        assert rotated != original
        me = client.get(f"{API}/me", headers=_bearer(refreshed.json()["access_token"]))
        assert me.status_code == 200

        client.cookies.clear()
        client.cookies.set(COOKIE, original)
        reused = client.post(f"{API}/refresh")

        assert reused.status_code == 401
        assert reused.json() == {
            "code": "REFRESH_INVALID",
            "message": "The session is invalid. Please log in again.",
            "retry_after_seconds": None,
            "details": {},
        }

    def test_session_failures_are_indistinguishable(
        self, client: TestClient, clock: ManualClock
    ) -> None:
        """Unknown, revoked and expired sessions all render the same response."""
        missing = client.post(f"{API}/refresh")

        _login(client)
        logged_out_secret = client.cookies[COOKIE]
        client.post(f"{API}/logout")
        client.cookies.set(COOKIE, logged_out_secret)
        revoked = client.post(f"{API}/refresh")

        client.cookies.clear()
        _login(client)
        clock.advance(days=2)
        expired = client.post(f"{API}/refresh")

        assert missing.json() == revoked.json() == expired.json()
        assert {missing.status_code, revoked.status_code, expired.status_code} == {401}

    def test_logout_clears_cookie(self, client: TestClient) -> None:
        _login(client)

        response = client.post(f"{API}/logout")

        assert response.status_code == 204
        cookie = response.headers["set-cookie"]
        assert f'{COOKIE}=""' in cookie or f"{COOKIE}=;" in cookie
        assert "Max-Age=0" in cookie
        assert "Path=/api/v1/auth" in cookie
        assert "HttpOnly" in cookie

    def test_logout_without_cookie_still_succeeds(self, client: TestClient) -> None:
        response = client.post(f"{API}/logout")
        assert response.status_code == 204
        assert "Max-Age=0" in response.headers["set-cookie"]

    def test_logout_everywhere(self, client: TestClient) -> None:
        first = _login(client).json()["access_token"]
        client.cookies.clear()
        _login(client)
        second_secret = client.cookies[COOKIE]

        response = client.post(f"{API}/logout/all", headers=_bearer(first))
        assert response.status_code == 204

        client.cookies.clear()
        client.cookies.set(COOKIE, second_secret)
        assert client.post(f"{API}/refresh").status_code == 401

    def test_me_requires_bearer(self, client: TestClient) -> None:
        response = client.get(f"{API}/me")
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_REQUIRED"

    def test_me_rejects_bad_token(self, client: TestClient) -> None:
        response = client.get(f"{API}/me", headers=_bearer("not-a-jwt"))
        assert response.status_code == 401
        assert response.json()["code"] == "ACCESS_INVALID"

    def test_me_rejects_expired_token(self, client: TestClient, clock: ManualClock) -> None:
        token = _login(client).json()["access_token"]
        clock.advance(minutes=15)
        response = client.get(f"{API}/me", headers=_bearer(token))
        assert response.json()["code"] == "ACCESS_INVALID"


def test_disabled_account_cannot_log_in(
    client: TestClient, db_session: Session, clock: ManualClock
) -> None:
    make_user(db_session, clock, email=EMAIL, nickname="newcomer", status=UserStatus.DISABLED)
    response = _login(client)
    assert response.status_code == 403
    assert response.json()["code"] == "ACCOUNT_DISABLED"


def test_store_outage_is_retryable(
    client: TestClient, otp_engine: OtpPolicyEngine, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _down(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(otp_engine, "request_challenge", _down)
    response = client.post(f"{API}/signup/otp/request", json={"email": EMAIL})

    assert response.status_code == 503
    assert response.json()["code"] == "STORE_UNAVAILABLE"
    assert response.headers["Retry-After"] == "1"


def test_unexpected_error_is_internal(
    app: FastAPI, otp_engine: OtpPolicyEngine, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _boom(*args, **kwargs):
        raise RuntimeError("bug")

    monkeypatch.setattr(otp_engine, "request_challenge", _boom)
    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.post(f"{API}/signup/otp/request", json={"email": EMAIL})

    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"
    assert "bug" not in response.text

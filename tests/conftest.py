# tests/conftest.py
from __future__ import annotations

import os
import threading
from collections.abc import Generator, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("OTP_HMAC_SECRET", "test-otp-hmac-secret-0123456789abcdef")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789abcdefghijkl")
os.environ.setdefault("REFRESH_HASH_SECRET", "test-refresh-secret-0123456789abcdefgh")

from campus_gate.api.v1 import dependencies as deps  # noqa: E402
from campus_gate.core import security  # noqa: E402
from campus_gate.core.security import AccessTokenService  # noqa: E402
from campus_gate.core.settings import Settings  # noqa: E402
from campus_gate.db.locking import KeyedLockStore  # noqa: E402
from campus_gate.db.session import build_engine, create_tables, drop_tables  # noqa: E402
from campus_gate.db.session import get_db as app_get_session  # noqa: E402
from campus_gate.main import app as fastapi_app  # noqa: E402
from campus_gate.models import User, UserRole, UserStatus  # noqa: E402
from campus_gate.services.login import LoginService  # noqa: E402
from campus_gate.services.mail import CodeIssued  # noqa: E402
from campus_gate.services.otp import OtpPolicyEngine  # noqa: E402
from campus_gate.services.sessions import RefreshSessionEngine  # noqa: E402
from campus_gate.services.signup import SignupService  # noqa: E402

CAMPUS_DOMAIN = "kyonggi.ac.kr"
STRONG_PASSWORD = "campus!2024"
START_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class ManualClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime = START_TIME) -> None:
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **delta: float) -> datetime:
        with self._lock:
            self._now += timedelta(**delta)
            return self._now

    def set(self, moment: datetime) -> None:
        with self._lock:
            self._now = moment


class RecordingMailSender:
    """Mail collaborator that keeps delivered codes in memory."""

    def __init__(self) -> None:
        self.sent: list[CodeIssued] = []
        self._lock = threading.Lock()

    def deliver(self, event: CodeIssued) -> None:
        with self._lock:
            self.sent.append(event)

    def codes_for(self, email: str) -> list[str]:
        return [item.code for item in self.sent if item.email == email]

    def last_code(self, email: str) -> str:
        return self.codes_for(email)[-1]


def key_is_held(store: KeyedLockStore, key: str) -> bool:
    """Tell whether some session currently holds ``key`` in ``store``."""
    entry = store._entries.get(key)
    return entry is not None and entry.lock.locked()


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    # A file database lets worker threads use separate connections.
    engine = build_engine(f"sqlite:///{tmp_path / 'campus_gate.db'}")

    @event.listens_for(engine, "connect")
    def _use_wal(dbapi_connection, connection_record) -> None:
        dbapi_connection.execute("PRAGMA journal_mode=WAL")

    create_tables(bind=engine)
    try:
        yield engine
    finally:
        drop_tables(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def mail_sender() -> RecordingMailSender:
    return RecordingMailSender()


@pytest.fixture()
def lock_store() -> KeyedLockStore:
    return KeyedLockStore(timeout_seconds=5.0)


@pytest.fixture()
def test_settings() -> Settings:
    """Provide an isolated Settings instance with the default policies."""
    return Settings(
        otp_hmac_secret="test-otp-hmac-secret-0123456789abcdef",
        jwt_secret="test-jwt-secret-0123456789abcdefghijkl",
        refresh_hash_secret="test-refresh-secret-0123456789abcdefgh",
        allowed_email_domain=CAMPUS_DOMAIN,
        otp_ttl_minutes=10,
        otp_max_failures=5,
        otp_resend_cooldown_seconds=20,
        otp_daily_send_limit=5,
        otp_quota_timezone="UTC",
        access_token_ttl_seconds=900,
        refresh_remember_me_seconds=604800,
        refresh_session_ttl_seconds=86400,
        refresh_cookie_name="KG_REFRESH",
        refresh_cookie_path="/api/v1/auth",
        refresh_cookie_samesite="lax",
        refresh_cookie_secure=False,
    )


@pytest.fixture()
def access_tokens(test_settings: Settings, clock: ManualClock) -> AccessTokenService:
    return AccessTokenService.from_settings(test_settings, clock=clock)


@pytest.fixture()
def otp_engine(
    test_settings: Settings,
    lock_store: KeyedLockStore,
    mail_sender: RecordingMailSender,
    clock: ManualClock,
) -> OtpPolicyEngine:
    return OtpPolicyEngine.from_settings(
        test_settings,
        lock_store=lock_store,
        mail_sender=mail_sender,
        clock=clock,
    )


@pytest.fixture()
def session_engine(
    test_settings: Settings,
    lock_store: KeyedLockStore,
    access_tokens: AccessTokenService,
    clock: ManualClock,
) -> RefreshSessionEngine:
    return RefreshSessionEngine.from_settings(
        test_settings,
        lock_store=lock_store,
        access_tokens=access_tokens,
        clock=clock,
    )


@pytest.fixture()
def signup_service(otp_engine: OtpPolicyEngine, clock: ManualClock) -> SignupService:
    return SignupService(otp_engine, clock=clock)


@pytest.fixture()
def login_service(
    otp_engine: OtpPolicyEngine,
    session_engine: RefreshSessionEngine,
    access_tokens: AccessTokenService,
    clock: ManualClock,
) -> LoginService:
    return LoginService(
        domain_policy=otp_engine.domain_policy,
        sessions=session_engine,
        access_tokens=access_tokens,
        clock=clock,
    )


def make_user(
    session: Session,
    clock: ManualClock,
    *,
    email: str = f"member@{CAMPUS_DOMAIN}",
    nickname: str = "member",
    password: str = STRONG_PASSWORD,
    status: UserStatus = UserStatus.ACTIVE,
) -> int:
    """Persist a user and return its id."""
    user = User(
        email=email,
        password_hash=security.hash_password(password),
        nickname=nickname,
        role=UserRole.USER,
        status=status,
        created_at=clock.now(),
    )
    session.add(user)
    session.flush()
    user_id = user.id
    session.commit()
    return user_id


@pytest.fixture()
def test_user_id(db_session: Session, clock: ManualClock) -> int:
    """Create and return the id of a persisted, active test user."""
    return make_user(db_session, clock)


@pytest.fixture()
def app(
    db_session: Session,
    test_settings: Settings,
    otp_engine: OtpPolicyEngine,
    session_engine: RefreshSessionEngine,
    access_tokens: AccessTokenService,
) -> Iterator[FastAPI]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    overrides = {
        app_get_session: _get_session_override,
        deps.get_settings: lambda: test_settings,
        deps.get_otp_engine: lambda: otp_engine,
        deps.get_session_engine: lambda: session_engine,
        deps.get_access_token_service: lambda: access_tokens,
    }
    fastapi_app.dependency_overrides.update(overrides)
    try:
        yield fastapi_app
    finally:
        for dependency in overrides:
            fastapi_app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client

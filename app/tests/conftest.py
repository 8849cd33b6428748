import asyncio
import os

# Settings are read once per process, so the environment must be in place before app imports.
os.environ.update({
    "TOURBOOK_ENVIRONMENT": "test",
    "TOURBOOK_DATABASE_URL": "sqlite://",
    "TOURBOOK_JWT_SECRET": "test-access-secret-0123456789abcdef",
    "TOURBOOK_JWT_REFRESH_SECRET": "test-refresh-secret-0123456789abcdef",
    "TOURBOOK_ENCRYPTION_KEY": "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff",
    "TOURBOOK_ADMIN_EMAIL": "admin@bhutantours.bt",
    "TOURBOOK_ADMIN_PASSWORD": "Admin-Password-123",
    "TOURBOOK_OTP_HASH_ROUNDS": "4",
    "TOURBOOK_EMAIL_PROVIDER": "console",
    "TOURBOOK_FRONTEND_URL": "http://localhost:3000",
    "TOURBOOK_LOG_DIR": "",
})

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core import security  # noqa: E402
from app.core.config import get_settings  # noqa: E402
from app.core.otp_cache import ExpiringCache  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.models import User, UserRole  # noqa: E402
from app.services.email_service import EmailResult  # noqa: E402
from app.services.otp_service import OtpEngine  # noqa: E402

get_settings.cache_clear()

USER_PASSWORD = "Traveller-Pass-42"


class FakeEmailSender:
    """Records outgoing mail instead of delivering it."""

    provider = "fake"

    def __init__(self, ok: bool = True, delay: float = 0.0, raises: Exception | None = None):
        self.ok = ok
        self.delay = delay
        self.raises = raises
        self.sent = []

    async def send(self, to, subject, html, text=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises is not None:
            raise self.raises
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        if not self.ok:
            return EmailResult(ok=False, provider=self.provider, error="mailbox unavailable")
        return EmailResult(ok=True, provider=self.provider, message_id=f"fake-{len(self.sent)}")

    @property
    def last_text(self) -> str:
        return self.sent[-1]["text"]

    def last_code(self) -> str:
        # "Your one-time login code is 012345. It expires in 5 minutes."
        return self.last_text.split("code is ", 1)[1].split(".", 1)[0]

    def last_reset_token(self) -> str:
        return self.last_text.split("token=", 1)[1].split()[0]


@pytest.fixture()
def settings():
    return get_settings()


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def mailer():
    return FakeEmailSender()


@pytest.fixture()
def make_mailer():
    return FakeEmailSender


@pytest.fixture()
def otp_engine(settings, mailer):
    return OtpEngine(settings, mailer, ExpiringCache())


@pytest.fixture()
def user_password():
    return USER_PASSWORD


@pytest.fixture()
def user(db):
    user = User(
        name="Pema Wangmo",
        email="pema@example.com",
        password_hash=security.hash_password(USER_PASSWORD),
        role=UserRole.USER,
        country="Bhutan",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def client(session_factory, settings, mailer):
    from fastapi.testclient import TestClient

    from app.api.deps import get_db
    from app.main import app, wire_services

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    wire_services(app, settings, mailer=mailer)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

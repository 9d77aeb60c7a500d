"""
Pytest configuration and fixtures for the auth service tests.
Provides an in-memory database, a controllable clock, a scripted code
generator, a recording transport and fully wired services.
"""
import os

# Read by SecurityConfig at construction; must be set before main is imported
os.environ.update({
    "JWT_SECRET_KEY": "test_secret_key_for_testing_purposes_only_very_long_and_secure",
    "JWT_ALGORITHM": "HS256",
    "JWT_ACCESS_TOKEN_EXPIRE_MINUTES": "30",
    "PASSWORD_MIN_LENGTH": "8",
    "PASSWORD_HASH_TIME_COST": "1",
    "PASSWORD_HASH_MEMORY_COST": "1024",
    "PASSWORD_HASH_PARALLELISM": "1",
    "RATE_LIMIT_ENABLED": "false",
    "ENABLE_SECURITY_HEADERS": "true",
    "SMS_PROVIDER": "log",
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
})

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from services.db import Base
from services.container import build_services
from services.errors import TransportError
from services.security import SecurityConfig
from services.verification import generate_verification_code
from models import user, verification_code, login_event  # register tables on Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

@dataclass
class SentMessage:
    destination: str
    message: str
    subject: Optional[str]

    @property
    def code(self) -> str:
        return re.search(r"\b(\d{4,12})\b", self.message).group(1)

class FakeTransport:
    """Records every message; raises TransportError while ``fail`` is set."""

    def __init__(self):
        self.sent: list[SentMessage] = []
        self.fail = False

    async def send(self, destination: str, message: str, subject: Optional[str] = None) -> None:
        if self.fail:
            raise TransportError("provider unavailable")
        self.sent.append(SentMessage(destination, message, subject))

    def last_code(self) -> str:
        return self.sent[-1].code

class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

class ScriptedCodes:
    """Hands out queued codes first, then random ones."""

    def __init__(self):
        self.queue: list[str] = []

    def push(self, *codes: str):
        self.queue.extend(codes)

    def __call__(self) -> str:
        if self.queue:
            return self.queue.pop(0)
        return generate_verification_code(6)

@pytest.fixture
def config() -> SecurityConfig:
    return SecurityConfig()

@pytest.fixture
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()

@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc))

@pytest.fixture
def codes() -> ScriptedCodes:
    return ScriptedCodes()

@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()

@pytest.fixture
def services(config, session_factory, transport, clock, codes):
    return build_services(config, session_factory, transport=transport, clock=clock, code_generator=codes)

@pytest.fixture
def verification_engine(services):
    return services.engine

@pytest.fixture
def accounts(services):
    return services.accounts

@pytest.fixture
def app(config, session_factory, services):
    from main import create_app

    application = create_app(config)
    application.state.session_factory = session_factory
    application.state.services = services
    return application

@pytest.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
        yield c

class AuthTestUtils:
    """Helpers shared by the account and API tests."""

    PASSWORD = "CorrectHorse42"

    @staticmethod
    async def signup_verified(accounts, transport: FakeTransport, email: str, contact: str,
                              password: str = PASSWORD):
        """Sign up and confirm the contact with the code that was sent."""
        result = await accounts.signup(email, password, contact)
        await accounts.verify_signup_contact(contact, transport.last_code())
        return result

    @staticmethod
    def bearer(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def auth_utils():
    return AuthTestUtils

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that go through the HTTP layer"
    )
    config.addinivalue_line(
        "markers", "security: marks tests as security tests"
    )

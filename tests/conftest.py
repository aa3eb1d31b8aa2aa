"""
Test fixtures for the MoweSport API test suite.

This module provides shared fixtures used across all test files:

  - db_engine / session_factory / db_session: Fresh in-memory SQLite database
  - clock: Controllable UTC clock injected into the services
  - mailbox: Recording email dispatcher (welcome and recovery mail land here)
  - services: Freshly wired service bundle with generous rate limits
  - client: Async HTTP test client (unauthenticated)
  - api: Helper for logging in, registering and activating accounts
  - scope / other_scope: (city, sport) pairs from the seeded reference data
  - super_admin_headers / city_admin_headers / owner_headers: Bearer headers
    for principals created through the real registration flow

Key design decisions:
  - The two required secrets are set in the environment before anything
    from mowesport is imported, since settings are read at import time.
  - In-memory SQLite (sqlite+aiosqlite://) is used for speed and isolation.
    Each test gets a completely fresh database.
  - get_db is overridden with the same commit/rollback contract as the real
    dependency: committable domain errors still persist their audit events.
  - Only the super admin is inserted directly (it is the root of the
    hierarchy); every other principal is registered through the API and
    activated with the temporary password taken from the mailbox.
"""

import os

from cryptography.fernet import Fernet

os.environ.setdefault("JWT_SECRET", "test-secret-key-not-for-production")
os.environ.setdefault("TOTP_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import re  # noqa: E402
import uuid  # noqa: E402
from dataclasses import dataclass  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from mowesport.bootstrap import ensure_super_admin, seed_reference_data  # noqa: E402
from mowesport.config import MailSettings, RateLimitRule, settings  # noqa: E402
from mowesport.database import Base, enable_sqlite_savepoints, get_db  # noqa: E402
from mowesport.exceptions import MoweSportError  # noqa: E402
from mowesport.main import app  # noqa: E402
from mowesport.models.reference import City, Sport  # noqa: E402
from mowesport.rate_limit import RateLimiter  # noqa: E402
from mowesport.services.container import build_services  # noqa: E402
from mowesport.services.email_service import EmailDeliveryError  # noqa: E402


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

SUPER_ADMIN_EMAIL = "root@mowesport.com"
SUPER_ADMIN_PASSWORD = "RootPass123!"
CITY_ADMIN_EMAIL = "carlos.admin@example.com"
CITY_ADMIN_PASSWORD = "CityAdmin123!"
OWNER_EMAIL = "olga.owner@example.com"
OWNER_PASSWORD = "OwnerPass123!"

# Settings used by the test services: no sleeping between mail retries
TEST_SETTINGS = settings.model_copy(update={"MAIL": MailSettings(max_attempts=2, backoff_base=0.0)})

GENEROUS_RULES = {
    bucket: RateLimitRule(max_requests=10_000, window=timedelta(minutes=1))
    for bucket in settings.RATE_LIMIT.as_rules()
}


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingEmailDispatcher:
    """Keeps every message; raises EmailDeliveryError while `failing` is set."""

    def __init__(self):
        self.sent: list[dict] = []
        self.failing = False
        self.attempts = 0

    async def send(self, to: str, subject: str, body: str, is_html: bool = False) -> None:
        self.attempts += 1
        if self.failing:
            raise EmailDeliveryError("SMTP relay unavailable")
        self.sent.append({"to": to, "subject": subject, "body": body, "is_html": is_html})

    def messages_to(self, email: str) -> list[dict]:
        return [m for m in self.sent if m["to"] == email]

    def _extract(self, email: str, label: str) -> str:
        for message in reversed(self.messages_to(email)):
            match = re.search(rf"^{label}: (\S+)$", message["body"], re.MULTILINE)
            if match:
                return match.group(1)
        raise AssertionError(f"No '{label}' mail found for {email}")

    def temporary_password(self, email: str) -> str:
        return self._extract(email, "Temporary password")

    def recovery_token(self, email: str) -> str:
        return self._extract(email, "Recovery code")


@dataclass
class Scope:
    city_id: uuid.UUID
    sport_id: uuid.UUID

    def as_json(self) -> dict:
        return {"city_id": str(self.city_id), "sport_id": str(self.sport_id)}


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailbox():
    return RecordingEmailDispatcher()


@pytest.fixture
def services(clock, mailbox):
    return build_services(
        TEST_SETTINGS,
        email_dispatcher=mailbox,
        rate_limiter=RateLimiter(GENEROUS_RULES),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory, services):
    """
    Async HTTP test client with the test database and services injected.

    The get_db override keeps the production contract: commit on success or
    on a committable domain error, roll back otherwise.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except MoweSportError as exc:
                if exc.commit_session:
                    await session.commit()
                else:
                    await session.rollback()
                raise
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    previous_services = app.state.services
    app.state.services = services

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.state.services = previous_services
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seed data and principals
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def reference_data(session_factory):
    """Seeded cities and sports, keyed by name."""
    async with session_factory() as session:
        await seed_reference_data(session)
        await session.commit()
        cities = {c.name: c.id for c in (await session.execute(select(City))).scalars()}
        sports = {s.name: s.id for s in (await session.execute(select(Sport))).scalars()}
    return cities, sports


@pytest.fixture
def scope(reference_data):
    cities, sports = reference_data
    return Scope(city_id=cities["Bogotá"], sport_id=sports["Fútbol"])


@pytest.fixture
def other_scope(reference_data):
    cities, sports = reference_data
    return Scope(city_id=cities["Medellín"], sport_id=sports["Fútbol"])


@pytest_asyncio.fixture
async def super_admin(session_factory, reference_data):
    async with session_factory() as session:
        user = await ensure_super_admin(session, SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        await session.commit()
    return user


class Api:
    """Thin helpers over the HTTP surface for multi-step scenarios."""

    def __init__(self, client: AsyncClient, mailbox: RecordingEmailDispatcher):
        self.client = client
        self.mailbox = mailbox

    async def login(self, email: str, password: str, totp: str | None = None):
        payload = {"email": email, "password": password}
        if totp is not None:
            payload["totp"] = totp
        return await self.client.post("/auth/login", json=payload)

    async def headers_for(self, email: str, password: str) -> dict:
        response = await self.login(email, password)
        assert response.status_code == 200, f"Login failed: {response.text}"
        return bearer(response.json()["data"]["access_token"])

    async def register_admin(self, headers: dict, email: str, scope: Scope, **fields):
        payload = {"email": email, "first_name": "Carlos", "last_name": "Rojas", **scope.as_json(), **fields}
        return await self.client.post("/admin/register", json=payload, headers=headers)

    async def register_user(self, headers: dict, email: str, role: str, scope: Scope, **fields):
        payload = {
            "email": email,
            "first_name": "Olga",
            "last_name": "Pardo",
            "role": role,
            **scope.as_json(),
            **fields,
        }
        return await self.client.post("/users/register", json=payload, headers=headers)

    async def activate(self, email: str, new_password: str) -> dict:
        """Log in with the mailed temporary password, rotate it, return fresh headers."""
        temporary = self.mailbox.temporary_password(email)
        headers = await self.headers_for(email, temporary)
        response = await self.client.post(
            "/auth/change-password",
            json={
                "current_password": temporary,
                "new_password": new_password,
                "confirm_password": new_password,
            },
            headers=headers,
        )
        assert response.status_code == 200, f"Password change failed: {response.text}"
        return await self.headers_for(email, new_password)


@pytest.fixture
def api(client, mailbox):
    return Api(client, mailbox)


@pytest_asyncio.fixture
async def super_admin_headers(api, super_admin):
    return await api.headers_for(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)


@pytest_asyncio.fixture
async def city_admin_headers(api, super_admin_headers, scope):
    """A city_admin of `scope`, registered by the super admin and activated."""
    response = await api.register_admin(super_admin_headers, CITY_ADMIN_EMAIL, scope)
    assert response.status_code == 201, f"Registration failed: {response.text}"
    return await api.activate(CITY_ADMIN_EMAIL, CITY_ADMIN_PASSWORD)


@pytest_asyncio.fixture
async def owner_headers(api, city_admin_headers, scope):
    """An owner of `scope`, registered by the city admin and activated."""
    response = await api.register_user(city_admin_headers, OWNER_EMAIL, "owner", scope)
    assert response.status_code == 201, f"Registration failed: {response.text}"
    return await api.activate(OWNER_EMAIL, OWNER_PASSWORD)

"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database per test, an HTTP client bound
to the ASGI app, seeded users and a sandbox payment gateway.
"""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("METRICS_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("PAYMENT_GATEWAY", "sandbox")

from datetime import date, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import NullPool

from config.database import close_db, init_db, session_scope
from config.settings import settings
from main import app
from shared.middleware.rate_limit import FixedWindowRateLimiter
from shared.models.models import DriverProfile, Trip, User, UserRole
from shared.utils.payment_gateway import SandboxPaymentGateway
from shared.utils.security import JWTIdentityProvider
from tests.helpers import make_trip, make_user


# ── Database / Client ─────────────────────────────────────────

@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh file-backed SQLite database; concurrent resolvers need real connections."""
    await close_db()
    engine = await init_db(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    yield engine
    await close_db()


@pytest.fixture
def payment_gateway() -> SandboxPaymentGateway:
    return SandboxPaymentGateway()


@pytest_asyncio.fixture
async def client(db, payment_gateway):
    app.state.identity_provider = JWTIdentityProvider(
        secret_key=settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
    )
    app.state.payment_gateway = payment_gateway
    app.state.rate_limiter = FixedWindowRateLimiter(window_seconds=900, max_requests=10_000)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Seed Data ─────────────────────────────────────────────────

@pytest_asyncio.fixture
async def rider(db) -> User:
    return await make_user("rider-uid-1", "rider@example.com", UserRole.RIDER, first_name="Ama")


@pytest_asyncio.fixture
async def other_rider(db) -> User:
    return await make_user("rider-uid-2", "rider2@example.com", UserRole.RIDER, first_name="Yaw")


@pytest_asyncio.fixture
async def driver(db) -> User:
    user = await make_user("driver-uid-1", "driver@example.com", UserRole.DRIVER, first_name="Kofi")
    async with session_scope() as session:
        session.add(
            DriverProfile(
                user_id=user.id,
                license_number="GH-DL-0001",
                license_expiry=date.today() + timedelta(days=365),
            )
        )
    return user


@pytest_asyncio.fixture
async def other_driver(db) -> User:
    return await make_user("driver-uid-2", "driver2@example.com", UserRole.DRIVER, first_name="Esi")


@pytest_asyncio.fixture
async def admin(db) -> User:
    return await make_user("admin-uid-1", "admin@example.com", UserRole.RIDER, first_name="Admin")


@pytest_asyncio.fixture
async def trip(driver) -> Trip:
    return await make_trip(driver)

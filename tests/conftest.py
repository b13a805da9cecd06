"""
FraudDesk — shared test fixtures
Run:  pytest tests/ -v --tb=short
"""

import os

# Must be set before anything imports frauddesk.config / frauddesk.services.db
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALERT_WEBHOOK_URL", "")
os.environ.setdefault("KAFKA_BOOTSTRAP_SERVERS", "")
os.environ.setdefault("STRUCTURED_LOGGING_ENABLED", "false")

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from frauddesk.main import app
from frauddesk.models.models import UserRole
from frauddesk.services.db import Base, get_db
from frauddesk.services.security import create_token_pair

# ===========================================================================
# Fixtures — in-memory SQLite (async via aiosqlite), one database per test
# ===========================================================================
TEST_DB_URL = "sqlite+aiosqlite://"                    # :memory:


@pytest_asyncio.fixture()
async def session_factory():
    # StaticPool keeps every session on the same in-memory database
    engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
def kafka_producer():
    """Stands in for app.state.kafka_producer so tests never touch a broker."""
    producer = AsyncMock()
    producer.is_running = True
    return producer


@pytest_asyncio.fixture()
async def client(session_factory, kafka_producer):
    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.state.kafka_producer = kafka_producer
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    del app.state.kafka_producer


# ===========================================================================
# Auth helpers
# ===========================================================================
def bearer(role: UserRole = UserRole.ADMIN, username: str = "tester") -> dict:
    tokens = create_token_pair(subject=username, role=role.value)
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest.fixture()
def admin_headers():
    return bearer(UserRole.ADMIN, "admin")


@pytest.fixture()
def analyst_headers():
    return bearer(UserRole.ANALYST, "analyst")


@pytest.fixture()
def viewer_headers():
    return bearer(UserRole.VIEWER, "viewer")

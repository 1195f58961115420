"""
Pytest configuration and fixtures for VoxLedger backend tests.

Repository, service and API tests run against an in-memory SQLite database
(aiosqlite) built from the ORM metadata; one fresh database per test.
"""
import os
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

os.environ.setdefault("APP_ENV", "development")

from voxledger.config import Settings, get_settings
from voxledger.domain.usage.types import UsageAlert
from voxledger.infrastructure.database.connection import get_session
from voxledger.infrastructure.database.models.base import Base
from voxledger.infrastructure.database.models.user import User

TEST_DATABASE_URL = "sqlite+aiosqlite://"

UserFactory = Callable[..., Awaitable[User]]


@pytest.fixture
def test_settings() -> Settings:
    """Settings for tests: development mode, default rates."""
    return Settings(
        _env_file=None,
        app_env="development",
        database_url=TEST_DATABASE_URL,
        invoice_batch_concurrency=1,
    )


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def async_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create async test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(async_session: AsyncSession) -> UserFactory:
    """Factory that inserts and commits a user."""

    async def _make_user(
        plan: str = "FREE",
        *,
        email: str | None = None,
        user_id: uuid.UUID | None = None,
        subscription_started_at: datetime | None = None,
    ) -> User:
        user = User(
            id=user_id or uuid.uuid4(),
            email=email or f"{uuid.uuid4().hex[:12]}@example.com",
            name="Test User",
            plan=plan,
            subscription_started_at=subscription_started_at,
        )
        async_session.add(user)
        await async_session.commit()
        return user

    return _make_user


class RecordingAlertSink:
    """Alert sink that keeps alerts in memory for assertions."""

    def __init__(self) -> None:
        self.alerts: list[UsageAlert] = []

    async def emit(self, alert: UsageAlert) -> None:
        self.alerts.append(alert)


@pytest.fixture
def alert_sink() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def app(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    alert_sink: RecordingAlertSink,
) -> FastAPI:
    """Create test FastAPI application bound to the test database."""
    from voxledger.api.ratelimit import limiter
    from voxledger.main import create_app

    application = create_app()

    async def _get_test_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_session] = _get_test_session
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.state.alert_sink = alert_sink
    limiter.enabled = False
    return application


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


def build_event_payload(
    event_id: str,
    *,
    event_type: str = "CallEnded",
    assistant_id: str | None = None,
    duration_seconds: float | None = None,
    user_id: str | None = None,
    channel: str | None = None,
    started_at: str | None = None,
    ended_at: str | None = None,
    cost: str | None = None,
) -> dict[str, Any]:
    """Build an inbound event in the platform's camelCase wire format."""
    payload: dict[str, Any] = {"type": event_type, "id": event_id, "metadata": {}}
    if assistant_id is not None:
        payload["assistantId"] = assistant_id
    if duration_seconds is not None:
        payload["durationSeconds"] = duration_seconds
    if user_id is not None:
        payload["metadata"]["userId"] = user_id
    if channel is not None:
        payload["metadata"]["channel"] = channel
    if started_at is not None:
        payload["startedAt"] = started_at
    if ended_at is not None:
        payload["endedAt"] = ended_at
    if cost is not None:
        payload["cost"] = cost
    return payload


@pytest.fixture
def event_payload() -> Callable[..., dict[str, Any]]:
    """Factory for inbound event payloads."""
    return build_event_payload

"""Shared pytest fixtures: a temporary SQLite store, an in-process Redis, and an API client."""

import logging
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import shortlink.models  # noqa: F401
from shortlink.config import Settings
from shortlink.database import Base, build_engine, build_session_factory
from shortlink.dependencies import get_service_manager
from shortlink.main import app
from shortlink.service import LinkService
from shortlink.store import LinkStore
from shortlink.tasks import TaskRunner


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        APP_ENV="test",
        BASE_URL="http://test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'shortlink.db'}",
        RATE_LIMIT_ANON_MAX=1000,
        RATE_LIMIT_USER_MAX=1000,
    )


@pytest_asyncio.fixture(scope="function")
async def session_factory(settings: Settings) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = build_engine(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> LinkStore:
    return LinkStore(session_factory, timeout_seconds=5.0)


@pytest_asyncio.fixture(scope="function")
async def redis_client() -> AsyncGenerator[fake_aioredis.FakeRedis, None]:
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture(scope="function")
async def tasks() -> AsyncGenerator[TaskRunner, None]:
    runner = TaskRunner()
    yield runner
    await runner.drain(timeout=5)


@pytest.fixture
def service(redis_client, store: LinkStore, tasks: TaskRunner, settings: Settings) -> LinkService:
    return LinkService(cache=redis_client, store=store, tasks=tasks, settings=settings)


@pytest_asyncio.fixture(scope="function")
async def client(redis_client, store: LinkStore, tasks: TaskRunner, settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    manager = SimpleNamespace(
        settings=settings,
        logger=logging.getLogger("shortlink.test"),
        cache=redis_client,
        store=store,
        tasks=tasks,
    )

    async def override_get_service_manager() -> SimpleNamespace:
        return manager

    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

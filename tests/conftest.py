"""
Shared pytest fixtures.

Every test gets its own file-backed SQLite database (aiosqlite). A file is
used instead of :memory: so that concurrently running sessions, such as two
racing first-access provisioning calls, see the same data.
"""
import os

# Must be set before anything imports app.config
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["CHAT_TOKEN_SECRET"] = "test-chat-secret"
os.environ["AUTH_ENABLED"] = "true"
os.environ["ALLOW_DEMO"] = "false"
os.environ["GATEWAY_URL"] = "http://gateway.test"
os.environ["GATEWAY_TOKEN"] = "test-gateway-token"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_BOT_USERNAME"] = "test_agent_bot"
os.environ["WEBHOOK_SECRET"] = ""
os.environ["GATEWAY_WS_URL"] = ""

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.api.deps import get_gateway_client
from app.config import get_settings
from app.db.database import Base, get_db
from app.db import models  # noqa: F401
from app.main import app
from app.services.gateway_client import GatewayClient
from tests.fakes import FakeGateway


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Tests that tweak env vars get a clean Settings object."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def session_factory(tmp_path, monkeypatch) -> AsyncGenerator[async_sessionmaker, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    # Services that open their own sessions
    monkeypatch.setattr("app.services.agent_directory.AsyncSessionLocal", factory)
    monkeypatch.setattr("app.services.channel_manager.AsyncSessionLocal", factory)

    yield factory
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def client(session_factory, gateway, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _get_gateway():
        yield gateway

    # ensure_agent falls back to GatewayClient.from_settings()
    monkeypatch.setattr(GatewayClient, "from_settings", staticmethod(lambda: gateway))

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway_client] = _get_gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


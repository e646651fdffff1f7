from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.deps import Services, build_services
from app.db.base import Base
from app.main import app
from app.services.cluster_store import InMemoryClusterStore
from app.services.endpoint_fetcher import EndpointFetcher

# Use in-memory SQLite for fast integration tests
DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@pytest_asyncio.fixture
async def services(store: InMemoryClusterStore) -> AsyncGenerator[Services, None]:
    """Application services over a fresh in-memory cluster and ledger for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    services = build_services(
        store,
        session_factory=TestingSessionLocal,
        fetcher=EndpointFetcher(store, sample_fallback=False),
    )
    yield services

    await services.lifecycle.shutdown()
    # Drop all tables after each test to ensure isolation
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    """Provide an AsyncClient for the FastAPI app with the test services installed."""
    # ASGITransport does not run the lifespan, so services are wired here
    app.state.services = services

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    del app.state.services

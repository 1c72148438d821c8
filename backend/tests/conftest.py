"""Shared fixtures: in-memory SQLite database, engine tools and an API client."""


import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import tripdesk.models  # noqa: F401
from tripdesk.config import Settings
from tripdesk.database import Base, get_db
from tripdesk.services.engine import build_engine_context
from tripdesk.services.trip_tools import TripTools



@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, database_url="sqlite+aiosqlite://")


@pytest.fixture
def context(settings):
    return build_engine_context(settings)


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def tools(settings, context) -> TripTools:
    return TripTools(context, settings)


@pytest.fixture
def make_trip(db, tools):
    """Create a trip through the service layer (slug, components, assignments)."""

    async def _make(**attrs):
        attrs.setdefault("document_version", 2)
        trip, warnings = await tools.trips.create_trip(db, attrs)
        assert warnings == []
        return trip

    return _make


@pytest.fixture
async def client(session_factory, tools):
    from tripdesk.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.state.tools = tools
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

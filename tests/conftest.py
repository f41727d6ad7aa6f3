"""Pytest configuration and fixtures for ShelfCloud tests.

This module provides reusable fixtures for:
- Async test client
- Test database (temporary SQLite file)
- Mocked Google Books client
- Settings overrides
"""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from shelfcloud.config import Settings, get_settings
from shelfcloud.core.database import build_session_factory, create_schema
from shelfcloud.main import create_app
from shelfcloud.services.cache import SearchCache
from shelfcloud.services.google_books import GoogleBooksService, UpstreamPage
from shelfcloud.services.item_store import ItemStore

# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test-specific settings.

    Overrides production settings with test-appropriate values.
    """
    return Settings(
        app_env="development",  # type: ignore[arg-type]
        debug=True,
        log_level="DEBUG",  # type: ignore[arg-type]
        log_format="console",  # type: ignore[arg-type]
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'shelfcloud-test.db'}",
        session_secret="test-session-secret",  # type: ignore[arg-type]
        api_key="test-api-key",  # type: ignore[arg-type]
        google_books_base_url="https://books.example.test/books/v1",
    )


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app(test_settings: Settings) -> Generator[FastAPI, None, None]:
    """Create a test FastAPI application with test settings."""
    app = create_app(settings=test_settings)
    app.dependency_overrides[get_settings] = lambda: test_settings
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing.

    This client makes requests to the test app without starting a server.
    Cookies persist between requests, so one client is one session.

    Usage:
        async def test_endpoint(async_client: AsyncClient):
            response = await async_client.get("/health/live")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
async def authenticated_client(
    app: FastAPI, test_settings: Settings
) -> AsyncGenerator[AsyncClient, None]:
    """Create an authenticated async client using API key.

    This client automatically includes the X-API-Key header.
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-API-Key": test_settings.api_key.get_secret_value()},
    ) as client:
        yield client


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def session_factory(
    test_settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create a fresh SQLite database file with all tables.

    Usage:
        async def test_store(session_factory):
            async with session_factory() as session:
                ...
    """
    engine = create_async_engine(test_settings.database_url, poolclass=NullPool)
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def item_store(session_factory: async_sessionmaker[AsyncSession]) -> ItemStore:
    """Create an ItemStore over the test database."""
    return ItemStore(session_factory)


# =============================================================================
# Mock Service Fixtures
# =============================================================================


@pytest.fixture
def mock_upstream() -> MagicMock:
    """Create a mock Google Books client.

    Use this to avoid making real API calls in tests. ``fetch_page``
    returns an empty page unless a test sets its return value.

    Usage:
        async def test_search(mock_upstream: MagicMock):
            mock_upstream.fetch_page.return_value = UpstreamPage(...)
    """
    mock = MagicMock(spec=GoogleBooksService)
    mock.fetch_page = AsyncMock(
        return_value=UpstreamPage(items=[], total_items=0, offset=0, limit=20)
    )
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def search_cache() -> SearchCache:
    """Create an empty memory cache with default limits."""
    return SearchCache()

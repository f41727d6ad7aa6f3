"""Tests for the search endpoints with mocked services.

Services are swapped through ``app.dependency_overrides``.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from shelfcloud.api.v1.search import sanitize_query
from shelfcloud.config import Settings
from shelfcloud.core.exceptions import PersistenceError, UpstreamServiceError
from shelfcloud.dependencies import get_item_store, get_search_service
from shelfcloud.main import create_app
from shelfcloud.schemas.search import MAX_PAGE
from shelfcloud.services.item_store import ItemStore, StoreResult, UpsertReport
from shelfcloud.services.search import SearchOutcome, SearchService, SearchSource
from tests.mocks.google_books_responses import (
    ANONYMOUS_VOLUME,
    DUNE_VOLUME,
    ISBN_ONLY_VOLUME,
    make_volume,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_search() -> MagicMock:
    service = MagicMock(spec=SearchService)
    service.search = AsyncMock(
        return_value=SearchOutcome(
            items=[DUNE_VOLUME],
            total_items=1,
            page=1,
            page_size=20,
            source=SearchSource.UPSTREAM,
        )
    )
    return service


@pytest.fixture
def mock_store() -> MagicMock:
    store = MagicMock(spec=ItemStore)
    store.search = AsyncMock(return_value=StoreResult(items=[], total_items=0))
    store.upsert_many = AsyncMock(return_value=UpsertReport())
    return store


@pytest.fixture
def overridden_app(app: FastAPI, mock_search: MagicMock, mock_store: MagicMock) -> FastAPI:
    app.dependency_overrides[get_search_service] = lambda: mock_search
    app.dependency_overrides[get_item_store] = lambda: mock_store
    return app


# =============================================================================
# Query Sanitation
# =============================================================================


class TestSanitizeQuery:
    def test_strips_whitespace(self) -> None:
        assert sanitize_query("  dune  ") == "dune"

    def test_removes_control_characters(self) -> None:
        assert sanitize_query("du\x00ne\n\t") == "dune"

    def test_truncates(self) -> None:
        assert len(sanitize_query("x" * 500)) == 200

    def test_empty(self) -> None:
        assert sanitize_query(None) == ""
        assert sanitize_query(" \x00 ") == ""


# =============================================================================
# GET /api/v1/books/search
# =============================================================================


class TestSearchEndpoint:
    @pytest.mark.asyncio
    async def test_search_returns_outcome(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_search: MagicMock,
    ) -> None:
        response = await async_client.get("/api/v1/books/search", params={"q": "Dune"})

        assert response.status_code == 200
        data = response.json()
        assert data["items"][0]["id"] == "B1hSG45JCX4C"
        assert data["total_items"] == 1
        assert data["from_cache"] is False
        assert data["stale"] is False
        assert data["rate_limited"] is False
        assert data["background_refresh_triggered"] is False

        request, caller = mock_search.search.await_args.args
        assert request.query == "Dune"
        assert request.page == 1
        assert request.page_size == 20
        assert request.prefer_fresh is False
        assert caller.user_id is None

    @pytest.mark.asyncio
    async def test_missing_query_is_400(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_search: MagicMock,
    ) -> None:
        for params in ({}, {"q": "   "}, {"q": "\x00"}):
            response = await async_client.get("/api/v1/books/search", params=params)

            assert response.status_code == 400
            error = response.json()["error"]
            assert error["code"] == "MISSING_QUERY"
            assert error["details"] == {"field": "q"}

        mock_search.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_paging_is_422(
        self, overridden_app: FastAPI, async_client: AsyncClient
    ) -> None:
        for params in ({"page": 0}, {"page_size": 0}, {"page": "two"}):
            response = await async_client.get(
                "/api/v1/books/search", params={"q": "dune", **params}
            )
            assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_page_above_limit_is_422(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_search: MagicMock,
        mock_store: MagicMock,
    ) -> None:
        """Huge pages are rejected before any tier is consulted."""
        for path in ("/api/v1/books/search", "/api/v1/books/local-search"):
            response = await async_client.get(
                path, params={"q": "dune", "page": 10**19}
            )
            assert response.status_code == 422

        response = await async_client.get(
            "/api/v1/books/search", params={"q": "dune", "page": MAX_PAGE + 1}
        )
        assert response.status_code == 422

        mock_search.search.assert_not_awaited()
        mock_store.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_allowed_page(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_search: MagicMock,
    ) -> None:
        response = await async_client.get(
            "/api/v1/books/search", params={"q": "dune", "page": MAX_PAGE}
        )

        assert response.status_code == 200
        request, _ = mock_search.search.await_args.args
        assert request.page == MAX_PAGE

    @pytest.mark.asyncio
    async def test_page_size_clamped_to_40(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_search: MagicMock,
    ) -> None:
        await async_client.get(
            "/api/v1/books/search",
            params={"q": "dune", "page": 3, "page_size": 100, "prefer_fresh": "true"},
        )

        request, _ = mock_search.search.await_args.args
        assert request.page == 3
        assert request.page_size == 40
        assert request.prefer_fresh is True

    @pytest.mark.asyncio
    async def test_rate_limited_response(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_search: MagicMock,
    ) -> None:
        mock_search.search.return_value = SearchOutcome(
            items=[],
            total_items=0,
            page=1,
            page_size=20,
            source=SearchSource.RATE_LIMITED,
            message="Anonymous rate limit reached (3). Showing cached results.",
        )

        response = await async_client.get("/api/v1/books/search", params={"q": "dune"})

        assert response.status_code == 200
        data = response.json()
        assert data["rate_limited"] is True
        assert data["from_cache"] is True
        assert data["message"].startswith("Anonymous rate limit reached (3)")

    @pytest.mark.asyncio
    async def test_upstream_failure_is_502(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_search: MagicMock,
    ) -> None:
        mock_search.search.side_effect = UpstreamServiceError(
            details={"provider": "google_books", "error": "timeout"}
        )

        response = await async_client.get(
            "/api/v1/books/search",
            params={"q": "dune"},
            headers={"X-Request-ID": "req-123"},
        )

        assert response.status_code == 502
        error = response.json()["error"]
        assert error["code"] == "UPSTREAM_SERVICE_ERROR"
        assert error["request_id"] == "req-123"

    @pytest.mark.asyncio
    async def test_api_key_identifies_caller(
        self,
        overridden_app: FastAPI,
        authenticated_client: AsyncClient,
        mock_search: MagicMock,
    ) -> None:
        await authenticated_client.get("/api/v1/books/search", params={"q": "dune"})

        _, caller = mock_search.search.await_args.args
        assert caller.user_id == "api-key"
        assert caller.authenticated

    @pytest.mark.asyncio
    async def test_wrong_api_key_is_anonymous(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_search: MagicMock,
    ) -> None:
        await async_client.get(
            "/api/v1/books/search",
            params={"q": "dune"},
            headers={"X-API-Key": "not-the-key"},
        )

        _, caller = mock_search.search.await_args.args
        assert caller.user_id is None

    @pytest.mark.asyncio
    async def test_api_key_header_ignored_when_unset(
        self,
        test_settings: Settings,
        mock_search: MagicMock,
    ) -> None:
        """Without a configured key no header value grants an identity."""
        app = create_app(settings=test_settings.model_copy(update={"api_key": None}))
        app.dependency_overrides[get_search_service] = lambda: mock_search

        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            for key in ("dev-api-key-12345", ""):
                await client.get(
                    "/api/v1/books/search",
                    params={"q": "dune"},
                    headers={"X-API-Key": key},
                )
                _, caller = mock_search.search.await_args.args
                assert caller.user_id is None

    @pytest.mark.asyncio
    async def test_page_size_ceiling_read_from_app_settings(
        self,
        test_settings: Settings,
        mock_search: MagicMock,
    ) -> None:
        app = create_app(settings=test_settings.model_copy(update={"max_page_size": 10}))
        app.dependency_overrides[get_search_service] = lambda: mock_search

        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            await client.get(
                "/api/v1/books/search", params={"q": "dune", "page_size": 30}
            )

        request, _ = mock_search.search.await_args.args
        assert request.page_size == 10


# =============================================================================
# GET /api/v1/books/local-search
# =============================================================================


class TestLocalSearchEndpoint:
    @pytest.mark.asyncio
    async def test_local_search(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_store: MagicMock,
        mock_search: MagicMock,
    ) -> None:
        mock_store.search.return_value = StoreResult(items=[DUNE_VOLUME], total_items=9)

        response = await async_client.get(
            "/api/v1/books/local-search", params={"q": " dune ", "page": 2, "page_size": 5}
        )

        assert response.status_code == 200
        assert response.json() == {
            "items": [DUNE_VOLUME],
            "total_items": 9,
            "page": 2,
            "page_size": 5,
        }
        mock_store.search.assert_awaited_once_with("dune", limit=5, offset=5)
        mock_search.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_query_allowed(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_store: MagicMock,
    ) -> None:
        response = await async_client.get("/api/v1/books/local-search")

        assert response.status_code == 200
        mock_store.search.assert_awaited_once_with("", limit=20, offset=0)

    @pytest.mark.asyncio
    async def test_store_failure_is_500(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_store: MagicMock,
    ) -> None:
        mock_store.search.side_effect = PersistenceError(error="database is locked")

        response = await async_client.get("/api/v1/books/local-search", params={"q": "x"})

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "PERSISTENCE_ERROR"


# =============================================================================
# POST /api/v1/books/cache
# =============================================================================


class TestCacheEndpoint:
    @pytest.mark.asyncio
    async def test_empty_batch(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_store: MagicMock,
    ) -> None:
        response = await async_client.post("/api/v1/books/cache", json={"items": []})

        assert response.status_code == 200
        assert response.json() == {"message": "no items", "cached": 0}
        mock_store.upsert_many.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ingest_uses_identifier_fallback(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_store: MagicMock,
    ) -> None:
        mock_store.upsert_many.return_value = UpsertReport(
            upserted=["B1hSG45JCX4C", "9780593098240"], skipped=1
        )

        response = await async_client.post(
            "/api/v1/books/cache",
            json={"items": [DUNE_VOLUME, ISBN_ONLY_VOLUME, ANONYMOUS_VOLUME]},
        )

        assert response.status_code == 200
        assert response.json() == {"message": "ok", "cached": 2, "skipped": 1}
        items = list(mock_store.upsert_many.await_args.args[0])
        assert [i.external_id for i in items] == ["B1hSG45JCX4C", "9780593098240", None]

    @pytest.mark.asyncio
    async def test_batch_truncated_to_40(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_store: MagicMock,
    ) -> None:
        volumes = [make_volume(f"v{i}", f"Book {i}") for i in range(45)]

        await async_client.post("/api/v1/books/cache", json={"items": volumes})

        items = list(mock_store.upsert_many.await_args.args[0])
        assert len(items) == 40
        assert items[-1].external_id == "v39"

    @pytest.mark.asyncio
    async def test_partial_failure_is_500(
        self,
        overridden_app: FastAPI,
        async_client: AsyncClient,
        mock_store: MagicMock,
    ) -> None:
        mock_store.upsert_many.return_value = UpsertReport(
            upserted=["v1"], failed=["v2"]
        )

        response = await async_client.post(
            "/api/v1/books/cache",
            json={"items": [make_volume("v1", "One"), make_volume("v2", "Two")]},
        )

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "PERSISTENCE_ERROR"
        assert error["details"]["failed_ids"] == ["v2"]

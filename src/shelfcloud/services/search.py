"""SearchService - cache-aside search over the memory cache, the item store
and Google Books.

For each request the tiers are consulted in a fixed order and the first
one that can answer wins:

1. memory cache (skipped when ``prefer_fresh``)
2. item store substring search (skipped when ``prefer_fresh``);
   rows older than the freshness window are still served, and a detached
   refresh of the same page is scheduled
3. anonymous quota: once spent, the item store answers, rate-limited
4. Google Books; results are written to the store and the memory cache

Failures of the store while looking up (steps 2 and 3) degrade to the next
step. Upstream failures on the request path become UpstreamServiceError;
in a background refresh they are logged and dropped.
"""

import asyncio
from collections.abc import Awaitable, Callable, MutableMapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import structlog

from shelfcloud.core.exceptions import PersistenceError, UpstreamServiceError
from shelfcloud.core.logging import log_context
from shelfcloud.models.base import utcnow
from shelfcloud.services.cache import SearchCache, SearchKey
from shelfcloud.services.google_books import (
    CachedItem,
    GoogleBooksError,
    GoogleBooksService,
    UpstreamPage,
    compact_volume,
)
from shelfcloud.services.item_store import STORE_ERRORS, ItemStore, StoreResult
from shelfcloud.services.quota import SessionQuota

logger = structlog.get_logger(__name__)


class SearchSource(str, Enum):
    """Which tier answered a search."""

    MEMORY = "memory"
    STORE_FRESH = "store_fresh"
    STORE_STALE = "store_stale"
    RATE_LIMITED = "rate_limited"
    UPSTREAM = "upstream"


@dataclass
class Caller:
    """Who is searching: an optional user ID and their server-side session record."""

    user_id: str | None
    session: MutableMapping[str, Any] = field(default_factory=dict)

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


@dataclass
class SearchQuery:
    """A sanitized search request."""

    query: str
    page: int = 1
    page_size: int = 20
    prefer_fresh: bool = False

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class SearchOutcome:
    """Search result tagged with the tier that produced it."""

    items: list[dict[str, Any]]
    total_items: int
    page: int
    page_size: int
    source: SearchSource
    message: str | None = None

    @property
    def from_cache(self) -> bool:
        return self.source is not SearchSource.UPSTREAM

    @property
    def stale(self) -> bool:
        return self.source is SearchSource.STORE_STALE

    @property
    def background_refresh_triggered(self) -> bool:
        return self.source is SearchSource.STORE_STALE

    @property
    def rate_limited(self) -> bool:
        return self.source is SearchSource.RATE_LIMITED


class BackgroundRefresher:
    """Runs detached refresh tasks, at most one per search key.

    Tasks keep running after the request that scheduled them has been
    answered. Exceptions are logged and go nowhere else.
    """

    def __init__(self) -> None:
        self._tasks: dict[SearchKey, asyncio.Task[None]] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        key: SearchKey,
        refresh: Callable[[], Awaitable[None]],
    ) -> bool:
        """Start ``refresh`` in the background unless one is running for key.

        Returns:
            True if a new task was started
        """
        if key in self._tasks:
            logger.debug("background_refresh_in_flight", query=key.query, page=key.page)
            return False

        task = asyncio.create_task(
            self._run(key, refresh),
            name=f"refresh:{key.query}:{key.page}:{key.page_size}",
        )
        self._tasks[key] = task

        def _forget(done: asyncio.Task[None]) -> None:
            if self._tasks.get(key) is done:
                del self._tasks[key]

        task.add_done_callback(_forget)
        return True

    async def _run(self, key: SearchKey, refresh: Callable[[], Awaitable[None]]) -> None:
        with log_context(query=key.query, page=key.page, page_size=key.page_size):
            try:
                await refresh()
            except Exception as e:
                logger.warning(
                    "background_refresh_failed",
                    error_type=type(e).__name__,
                    error=str(e),
                )
            else:
                logger.info("background_refresh_completed")

    async def drain(self) -> None:
        """Wait for every in-flight refresh to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)


class SearchService:
    """Multi-tier search orchestrator.

    Usage:
        ```python
        service = SearchService(cache, store, google_books)
        outcome = await service.search(SearchQuery("dune"), Caller(user_id=None, session=s))
        ```
    """

    FRESHNESS_WINDOW = timedelta(hours=24)
    RATE_LIMIT_MESSAGE = "Anonymous rate limit reached ({allowed}). Showing cached results."

    def __init__(
        self,
        cache: SearchCache,
        store: ItemStore,
        upstream: GoogleBooksService,
        *,
        freshness_window: timedelta = FRESHNESS_WINDOW,
        quota_allowed: int = SessionQuota.ALLOWED,
        max_page_size: int = 40,
        refresher: BackgroundRefresher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            cache: Memory tier
            store: Persistent tier
            upstream: Google Books client
            freshness_window: Age up to which stored rows are served as fresh
            quota_allowed: Upstream calls per anonymous session
            max_page_size: Page size ceiling
            refresher: Runner for detached refreshes
            clock: Source of timezone-aware "now"
        """
        self.cache = cache
        self.store = store
        self.upstream = upstream
        self.freshness_window = freshness_window
        self.quota_allowed = quota_allowed
        self.max_page_size = max_page_size
        self.refresher = refresher or BackgroundRefresher()
        self._clock = clock

    async def search(self, request: SearchQuery, caller: Caller) -> SearchOutcome:
        """Answer one search request.

        Args:
            request: Sanitized query, page and page size
            caller: Identity and session of the requester

        Returns:
            SearchOutcome tagged with its source tier

        Raises:
            UpstreamServiceError: If Google Books had to be called and failed
        """
        request = SearchQuery(
            query=request.query,
            page=max(1, request.page),
            page_size=max(1, min(request.page_size, self.max_page_size)),
            prefer_fresh=request.prefer_fresh,
        )
        key = SearchCache.search_key(
            request.query, page=request.page, page_size=request.page_size
        )
        log = logger.bind(query=key.query, page=key.page, page_size=key.page_size)

        if not request.prefer_fresh:
            entry = self.cache.get(key)
            if entry is not None:
                log.debug("search_memory_hit")
                return self._outcome(
                    request, entry.items, entry.total_items, SearchSource.MEMORY
                )

            stored = await self._lookup_store(request, key)
            if stored is not None and not stored.empty:
                if self._is_fresh(stored.newest_fetched_at):
                    log.debug("search_store_fresh", total_items=stored.total_items)
                    return self._outcome(
                        request, stored.items, stored.total_items, SearchSource.STORE_FRESH
                    )

                spawned = self.refresher.schedule(
                    key, lambda: self._refresh(request, key)
                )
                log.info(
                    "search_store_stale",
                    newest_fetched_at=stored.newest_fetched_at,
                    refresh_spawned=spawned,
                )
                return self._outcome(
                    request, stored.items, stored.total_items, SearchSource.STORE_STALE
                )

        if not caller.authenticated:
            quota = SessionQuota(caller.session, allowed=self.quota_allowed)
            if not quota.remaining:
                limited = await self._rate_limited(request, log)
                if limited is not None:
                    return limited
            quota.increment()
            log = log.bind(upstream_calls=quota.calls_made)

        return await self._fetch_upstream(request, key, log)

    # -------------------------------------------------------------------------
    # Tiers
    # -------------------------------------------------------------------------

    async def _lookup_store(
        self, request: SearchQuery, key: SearchKey
    ) -> StoreResult | None:
        try:
            return await self.store.search(
                request.query, limit=request.page_size, offset=request.offset
            )
        except PersistenceError as e:
            logger.error(
                "search_store_lookup_failed",
                query=key.query,
                error=e.details.get("error", e.message),
            )
            return None

    async def _rate_limited(
        self, request: SearchQuery, log: structlog.stdlib.BoundLogger
    ) -> SearchOutcome | None:
        try:
            stored = await self.store.search(
                request.query, limit=request.page_size, offset=request.offset
            )
        except PersistenceError as e:
            # Last resort: the upstream call below
            log.error("search_rate_limit_fallback_failed", error=str(e))
            return None

        log.info("search_rate_limited", total_items=stored.total_items)
        return self._outcome(
            request,
            stored.items,
            stored.total_items,
            SearchSource.RATE_LIMITED,
            message=self.RATE_LIMIT_MESSAGE.format(allowed=self.quota_allowed),
        )

    async def _fetch_upstream(
        self,
        request: SearchQuery,
        key: SearchKey,
        log: structlog.stdlib.BoundLogger,
    ) -> SearchOutcome:
        try:
            page = await self.upstream.fetch_page(
                request.query, offset=request.offset, limit=request.page_size
            )
        except GoogleBooksError as e:
            log.error("search_upstream_failed", error=str(e))
            raise UpstreamServiceError(
                details={"provider": "google_books", "error": str(e)}
            ) from e

        await self._persist(page, log)
        compact = self._remember(key, page)
        log.info(
            "search_upstream_fetched",
            items=len(compact),
            total_items=page.total_items,
        )
        return self._outcome(request, compact, page.total_items, SearchSource.UPSTREAM)

    async def _refresh(self, request: SearchQuery, key: SearchKey) -> None:
        """Background job: refetch a stale page and rewrite both tiers."""
        page = await self.upstream.fetch_page(
            request.query, offset=request.offset, limit=request.page_size
        )
        report = await self.store.upsert_many(
            CachedItem.from_volume(volume) for volume in page.items
        )
        if report.failed:
            logger.warning("background_refresh_partial", failed=report.failed)
        self._remember(key, page)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _persist(
        self, page: UpstreamPage, log: structlog.stdlib.BoundLogger
    ) -> None:
        """Write fetched volumes to the store; failures never fail the request."""
        try:
            report = await self.store.upsert_many(
                CachedItem.from_volume(volume) for volume in page.items
            )
        except STORE_ERRORS as e:
            log.error("search_persist_failed", error=str(e))
            return
        if report.failed:
            log.warning("search_persist_partial", failed=report.failed)

    def _remember(self, key: SearchKey, page: UpstreamPage) -> list[dict[str, Any]]:
        compact = [compact_volume(volume) for volume in page.items]
        self.cache.put(key, compact, page.total_items)
        return compact

    def _is_fresh(self, fetched_at: datetime | None) -> bool:
        if fetched_at is None:
            return False
        return self._clock() - fetched_at <= self.freshness_window

    @staticmethod
    def _outcome(
        request: SearchQuery,
        items: list[dict[str, Any]],
        total_items: int,
        source: SearchSource,
        message: str | None = None,
    ) -> SearchOutcome:
        return SearchOutcome(
            items=items,
            total_items=total_items,
            page=request.page,
            page_size=request.page_size,
            source=source,
            message=message,
        )

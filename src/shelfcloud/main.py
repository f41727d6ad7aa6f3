"""ShelfCloud application factory.

``create_app`` wires settings, the session layer, request logging, error
handlers and routes. The search tiers are built in the lifespan, which
also drains background refreshes on shutdown.
"""

import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from shelfcloud.config import Settings, get_settings
from shelfcloud.core.exceptions import ShelfCloudError
from shelfcloud.core.logging import configure_logging, get_logger, log_context
from shelfcloud.services.quota import SessionStore

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the search tiers on startup and release them on shutdown."""
    from shelfcloud.core.database import close_db, get_session_factory, init_db
    from shelfcloud.services.cache import SearchCache
    from shelfcloud.services.google_books import GoogleBooksService
    from shelfcloud.services.item_store import ItemStore
    from shelfcloud.services.search import SearchService

    settings: Settings = app.state.settings
    configure_logging(settings)

    await init_db(settings)

    store = ItemStore(get_session_factory())
    upstream = GoogleBooksService(settings)
    search = SearchService(
        SearchCache(
            ttl_seconds=settings.search_cache_ttl_seconds,
            max_entries=settings.search_cache_max_entries,
        ),
        store,
        upstream,
        freshness_window=timedelta(seconds=settings.db_cache_ttl_seconds),
        quota_allowed=settings.anonymous_upstream_calls,
        max_page_size=settings.max_page_size,
    )
    app.state.item_store = store
    app.state.search_service = search

    logger.info(
        "shelfcloud_started",
        version=settings.app_version,
        environment=settings.app_env.value,
        google_books_url=settings.google_books_base_url,
    )

    yield

    # Refreshes still running need the client and the pool
    await search.refresher.drain()
    await upstream.close()
    await close_db()

    logger.info("shelfcloud_stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the ShelfCloud application.

    Args:
        settings: Settings to use instead of the environment

    Returns:
        FastAPI: Configured application instance
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Book search backed by Google Books, with a memory cache, a "
            "persistent store and per-session rate limiting for anonymous users."
        ),
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_store = SessionStore(max_age_seconds=settings.session_max_age)

    configure_middleware(app, settings)
    configure_exception_handlers(app)
    configure_routes(app)

    return app


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Install session, CORS and request logging middleware."""
    # The cookie carries the session ID and the signed-in user ID
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret.get_secret_value(),
        session_cookie=settings.session_cookie_name,
        max_age=settings.session_max_age,
        same_site="lax",
        https_only=settings.is_production,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    request_logger = get_logger("shelfcloud.request")

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Any) -> Any:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        with log_context(correlation_id=request_id):
            try:
                response = await call_next(request)
            except Exception as exc:
                request_logger.error(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(exc),
                )
                raise

            request_logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )

        response.headers["X-Request-ID"] = request_id
        return response


def configure_exception_handlers(app: FastAPI) -> None:
    """Render errors in the ``{"error": {...}}`` envelope."""
    exception_logger = get_logger("shelfcloud.exceptions")

    @app.exception_handler(ShelfCloudError)
    async def shelfcloud_error(request: Request, exc: ShelfCloudError) -> JSONResponse:
        log = exception_logger.error if exc.status_code >= 500 else exception_logger.warning
        log(
            "request_error",
            error_code=exc.code,
            error_message=exc.message,
            status_code=exc.status_code,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(request_id=getattr(request.state, "request_id", None)),
        )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        exception_logger.exception(
            "Unhandled exception",
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "An unexpected error occurred",
                    "request_id": getattr(request.state, "request_id", None),
                }
            },
        )


def configure_routes(app: FastAPI) -> None:
    """Mount health checks, the root document and the v1 API."""
    from shelfcloud.api.v1.router import router as v1_router

    @app.get("/health/live", tags=["Health"], summary="Liveness probe")
    async def liveness() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/health/ready", tags=["Health"], summary="Readiness probe")
    async def readiness() -> dict[str, Any]:
        """Ready once the database answers."""
        from shelfcloud.core.database import check_db_connection

        db = "ok" if await check_db_connection() else "error"
        return {"status": db, "checks": {"database": db}}

    @app.get("/", tags=["Root"], summary="API root")
    async def root(request: Request) -> dict[str, str]:
        settings: Settings = request.app.state.settings
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "health": "/health/live",
        }

    app.include_router(v1_router, prefix="/api/v1")


app = create_app()


def cli() -> None:
    """Run the API under uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "shelfcloud.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )

"""FastAPI dependency injection container.

This module provides dependency injection functions for use with FastAPI's
Depends() pattern. Long-lived services are created once in the application
lifespan and stored on ``app.state``; the functions here only hand them out,
so tests can replace any of them through ``app.dependency_overrides``.
"""

import secrets
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shelfcloud.config import Settings
from shelfcloud.core.exceptions import AuthenticationError
from shelfcloud.services.item_store import ItemStore
from shelfcloud.services.quota import SessionStore
from shelfcloud.services.search import Caller, SearchService


# ========================================
# Settings Dependencies
# ========================================
def get_app_settings(request: Request) -> Settings:
    """Get the settings the application was created with."""
    return request.app.state.settings


# Type alias for common dependency patterns
SettingsDep = Annotated[Settings, Depends(get_app_settings)]

# Session key the identity provider writes the signed-in user into
SESSION_USER_KEY = "user_id"

# Identity given to callers presenting the configured API key
API_KEY_IDENTITY = "api-key"


# ========================================
# Database Dependencies
# ========================================
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Yields a database session that automatically handles
    commit on success and rollback on exception.

    Yields:
        AsyncSession: Database session
    """

    from shelfcloud.core.database import get_async_session

    async for session in get_async_session():
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ========================================
# Service Dependencies
# ========================================
def get_search_service(request: Request) -> SearchService:
    """Get the search orchestrator created at startup."""
    return request.app.state.search_service


def get_item_store(request: Request) -> ItemStore:
    """Get the persistent item store created at startup."""
    return request.app.state.item_store


def get_session_store(request: Request) -> SessionStore:
    """Get the server-side session records."""
    return request.app.state.session_store


# ========================================
# Identity Dependencies
# ========================================
def get_caller(
    request: Request,
    settings: SettingsDep,
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> Caller:
    """Resolve who is calling.

    A valid ``X-API-Key`` header identifies the caller as the service
    identity; the header is ignored when no API key is configured.
    Otherwise the user ID placed in the session by the identity provider
    is used, if any. The returned caller holds the server-side session
    record, so quota updates outlive the request.

    Args:
        request: The current request
        settings: Application settings
        sessions: Server-side session records

    Returns:
        Caller: Identity and session record of the requester
    """
    record = sessions.load(request.session)

    api_key = request.headers.get("X-API-Key")
    if (
        api_key
        and settings.api_key is not None
        and secrets.compare_digest(
            api_key.encode(), settings.api_key.get_secret_value().encode()
        )
    ):
        return Caller(user_id=API_KEY_IDENTITY, session=record)

    user_id = request.session.get(SESSION_USER_KEY)
    return Caller(user_id=str(user_id) if user_id else None, session=record)


def get_current_user_id(caller: Annotated[Caller, Depends(get_caller)]) -> str:
    """Get the authenticated user ID.

    Raises:
        AuthenticationError: 401 if the caller has no identity

    Returns:
        str: User ID
    """
    if caller.user_id is None:
        raise AuthenticationError()
    return caller.user_id

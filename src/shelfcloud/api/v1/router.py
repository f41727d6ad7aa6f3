"""API v1 main router.

Aggregates all v1 API routers into a single router for inclusion in the app.
"""

from fastapi import APIRouter

from shelfcloud.api.v1.library import router as library_router
from shelfcloud.api.v1.search import router as search_router
from shelfcloud.api.v1.session import router as session_router

router = APIRouter()

# Include sub-routers
router.include_router(search_router, prefix="/books", tags=["Books"])
router.include_router(library_router, prefix="/library", tags=["Library"])
router.include_router(session_router, prefix="/session", tags=["Session"])

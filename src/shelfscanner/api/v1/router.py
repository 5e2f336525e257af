"""API v1 main router.

Aggregates all v1 API routers into a single router for inclusion in the app.
"""

from fastapi import APIRouter

from shelfscanner.api.v1.admin import router as admin_router
from shelfscanner.api.v1.books import router as books_router

router = APIRouter()

router.include_router(books_router, prefix="/books", tags=["Books"])
router.include_router(admin_router, prefix="/admin", tags=["Admin"])

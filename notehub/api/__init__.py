"""API routers for note-hub."""

from fastapi import APIRouter

from notehub.api.admin import router as admin_router
from notehub.api.events import router as events_router
from notehub.api.requests import router as requests_router

router = APIRouter()
router.include_router(requests_router)  # Has its own prefix /requests and tags
router.include_router(admin_router)  # Has its own prefix /admin and tags
router.include_router(events_router, tags=["events"])

__all__ = ["router"]

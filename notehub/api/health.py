"""Health endpoint."""

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from notehub.services import request_queue

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    service: str
    queued: int = 0
    active: int = 0


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness check with worker pool occupancy when it is running."""
    try:
        stats = request_queue.get_request_queue().get_stats()
    except RuntimeError:
        return HealthResponse(status="healthy", service="note-hub")
    return HealthResponse(
        status="healthy", service="note-hub", queued=stats.current_size, active=stats.active
    )

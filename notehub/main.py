"""
note-hub API Server
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from notehub.config import settings
from notehub.db import init_models
from notehub.services.agent_runner import JobProcessor
from notehub.services.ask_user import get_question_mirror
from notehub.services.model_selector import get_model_config_store
from notehub.services.request_queue import init_request_queue, shutdown_request_queue

# Configure logging for application modules (must be after imports)
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    logger.info(f"Starting note-hub on port {settings.port}")

    try:
        await init_models()
    except Exception as e:
        logger.warning(f"Could not create tables at startup: {e}")

    init_request_queue(JobProcessor())

    yield

    logger.info("Shutting down note-hub")
    await shutdown_request_queue()
    await get_question_mirror().close()
    await get_model_config_store().close()


app = FastAPI(
    title="note-hub",
    description="Agent orchestration for organizing, searching and refactoring note spaces",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Welcome to note-hub", "docs": "/docs"}


# Import and include routers (must be after app is created to avoid circular imports)
from notehub.api import router  # noqa: E402
from notehub.api.health import router as health_router  # noqa: E402

app.include_router(health_router)  # No prefix - /health for probes
app.include_router(router, prefix="/api")

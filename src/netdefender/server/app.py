"""FastAPI application exposing the topology services and game sessions.

Provides:
- Topology catalog, generation and path planning under /api/v1
- In-memory game sessions driven by explicit ticks under /api/v1/sessions
- GET /health
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from netdefender import __version__
from netdefender.api.sessions import get_registry
from netdefender.api.sessions import router as sessions_router
from netdefender.api.topologies import router as topologies_router
from netdefender.catalog import topology_names
from netdefender.config import get_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager: load settings, stop sessions on shutdown."""
    settings = get_settings()
    logger.info(
        "NetDefender %s starting with %d catalog topologies (seed=%s)",
        __version__,
        len(topology_names()),
        settings.seed,
    )
    yield
    get_registry().stop_all()


app = FastAPI(
    title="NetDefender",
    description="Adversarial path-planning and attack strategy engine",
    version=__version__,
    lifespan=lifespan,
)

# Include routers
app.include_router(topologies_router)
app.include_router(sessions_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}

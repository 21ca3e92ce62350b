"""REST API routers."""

from netdefender.api.sessions import router as sessions_router
from netdefender.api.topologies import router as topologies_router

__all__ = ["sessions_router", "topologies_router"]

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI

from relay_service.app.http.routers.health import router as health_router
from relay_service.app.http.routers.tools import router as tools_router
from relay_service.app.http.routers.turns import router as turns_router
from relay_service.core.logging import logger


def create_app(settings: Optional[Dict[str, Any]] = None, turn_service=None):
    """Create and configure the FastAPI application with DI"""
    from relay_service.core.config import load_settings
    from relay_service.core.factory import ServiceFactory

    if turn_service is None:
        settings = settings if settings is not None else load_settings()
        turn_service = ServiceFactory(settings).get_turn_service()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        cancelled = turn_service.cancel_all()
        if cancelled:
            logger.info(f"Shutdown cancelled {cancelled} active turn(s)")

    app = FastAPI(lifespan=lifespan)
    # store service on app state
    app.state.turn_svc = turn_service

    # Create a new APIRouter for versioning
    v1_router = APIRouter(prefix="/api/v1")

    # include routers
    v1_router.include_router(turns_router)
    v1_router.include_router(health_router)
    v1_router.include_router(tools_router)

    app.include_router(v1_router)
    return app

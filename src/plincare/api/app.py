"""Internal FastAPI application.

Serves the write-back trigger and the DMP document endpoints next to the
MLLP listener.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from plincare.config import Settings, get_settings
from plincare.utils.logging import get_logger

from . import cda_endpoints, health, write_back_endpoints

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    logger.info("api_starting", app_name=settings.app_name, version=settings.app_version)
    yield
    logger.info("api_shutting_down")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create the internal API application.

    Args:
        settings: Settings to use; the cached settings when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="HL7 v2 / FHIR bridge and DMP document services",
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
        openapi_url="/api/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.dependency_overrides[get_settings] = lambda: settings

    # Health check endpoints
    app.include_router(health.router)

    # Write-back to the HIS
    app.include_router(write_back_endpoints.router)

    # DMP document endpoints
    app.include_router(cda_endpoints.router)

    return app

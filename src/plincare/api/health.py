"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from plincare.config import Settings, get_settings

router = APIRouter(tags=["health"])

# Module-level dependency variables to avoid B008 errors
settings_dependency = Depends(get_settings)


@router.get("/health")
async def health_check(settings: Settings = settings_dependency) -> Dict[str, Any]:
    """Check basic service health."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "plincare-integration-engine",
        "version": settings.app_version,
        "environment": settings.environment,
    }

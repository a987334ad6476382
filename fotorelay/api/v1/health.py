"""
Health Check API endpoints for monitoring and system status.
"""
from typing import Any, Dict
from fastapi import APIRouter, Depends

from fotorelay.dependencies import ServiceContainer, get_container

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=Dict[str, Any])
async def get_health_status(container: ServiceContainer = Depends(get_container)):
    """
    Service status.

    Returns:
        App identity plus FTP server, event stream and catalog reachability state
    """
    settings = container.settings
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "ftp": {
            "state": container.adapter.state.value,
            "port": container.adapter.port
        },
        "event_subscribers": container.broadcaster.subscriber_count,
        "catalog_online": container.monitor.online
    }


@router.get("/live", response_model=Dict[str, str])
async def liveness_probe():
    """Simple alive status."""
    return {"status": "alive", "service": "fotorelay"}

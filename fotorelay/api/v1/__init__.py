"""
API v1 router configuration.
"""
from fastapi import APIRouter

from fotorelay.api.v1 import (
    albums,
    ftp,
    health,
    photos,
    stream,
    uploads
)

# Create main API router
api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(albums.router)
api_router.include_router(ftp.router)
api_router.include_router(health.router)
api_router.include_router(photos.router)
api_router.include_router(stream.router)
api_router.include_router(uploads.router)

"""
Uploads API - Relay in-memory images and back-fill albums to the cloud.

Endpoints:
- POST /uploads/image - Upload a base64 image and register it with an album
- POST /uploads/albums/{album_name}/sync - Upload every local-only image of an album
"""
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from fotorelay.dependencies import get_bearer_token, get_upload_relay
from fotorelay.exceptions import InputValidationError
from fotorelay.services.upload_relay import UploadPayload, UploadRelay

router = APIRouter(prefix="/uploads", tags=["uploads"])


class ImageUploadRequest(BaseModel):
    """Base64 image, optionally as a data URI."""
    model_config = ConfigDict(populate_by_name=True)

    image: Optional[str] = Field(None, description="Base64 data or data:image/...;base64, URI")
    catalog_item_id: Optional[str] = Field(None, alias="catalogItemId")
    album_name: Optional[str] = Field(None, alias="albumName")
    owner_id: Optional[str] = Field(None, alias="ownerId")
    filename: Optional[str] = None


class AlbumSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    catalog_item_id: Optional[str] = Field(None, alias="catalogItemId")


@router.post("/image")
async def upload_image(
    request: ImageUploadRequest,
    token: Optional[str] = Depends(get_bearer_token),
    relay: UploadRelay = Depends(get_upload_relay)
):
    """Upload an image to the cloud store and register it with the catalog."""
    if not request.image:
        raise InputValidationError("Missing required field: image", ["image"])

    payload = UploadPayload.from_base64(request.image, filename=request.filename or "upload")
    record = await relay.relay(
        payload,
        request.catalog_item_id,
        token,
        label=request.album_name,
        owner_id=request.owner_id
    )
    return {"url": record.source_url, "record": record.to_dict()}


@router.post("/albums/{album_name}/sync")
async def sync_album_to_cloud(
    album_name: str,
    request: AlbumSyncRequest,
    token: Optional[str] = Depends(get_bearer_token),
    relay: UploadRelay = Depends(get_upload_relay)
):
    records = await relay.sync_album_to_cloud(album_name, request.catalog_item_id, token)
    return {"photos": [record.to_dict() for record in records]}

"""
Photos API - Local media records of an album.
"""
from typing import List
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from fotorelay.dependencies import get_db
from fotorelay.repositories.media_repository import MediaRepository

router = APIRouter(prefix="/photos", tags=["photos"])


class BulkDeleteRequest(BaseModel):
    ids: List[UUID]


@router.get("")
async def list_photos(album: str = Query(..., description="Album name"), db: AsyncSession = Depends(get_db)):
    records = await MediaRepository(db).list_by_label(album)
    return [record.to_dict() for record in records]


@router.delete("/{record_id}")
async def delete_photo(record_id: UUID, db: AsyncSession = Depends(get_db)):
    deleted = await MediaRepository(db).delete(record_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Photo not found")
    return {"success": True}


@router.post("/bulk-delete")
async def bulk_delete_photos(request: BulkDeleteRequest, db: AsyncSession = Depends(get_db)):
    changes = await MediaRepository(db).bulk_delete(request.ids)
    return {"success": True, "changes": changes}

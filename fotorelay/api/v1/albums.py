"""
Albums API - Album changes routed through the offline sync queue.

Every change is queued first and delivered right away when the catalog is
reachable; otherwise it waits for the connectivity monitor.
"""
from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, Depends

from fotorelay.dependencies import get_bearer_token, get_sync_queue
from fotorelay.services.sync_queue import OfflineSyncQueue, SyncAction

router = APIRouter(prefix="/albums", tags=["albums"])


@router.post("")
async def create_album(
    payload: Dict[str, Any] = Body(...),
    token: Optional[str] = Depends(get_bearer_token),
    queue: OfflineSyncQueue = Depends(get_sync_queue)
):
    result = await queue.record(SyncAction.CREATE, payload, token)
    return {"queued": True, "flush": result.to_dict()}


@router.put("/{album_id}")
async def update_album(
    album_id: str,
    payload: Dict[str, Any] = Body(...),
    token: Optional[str] = Depends(get_bearer_token),
    queue: OfflineSyncQueue = Depends(get_sync_queue)
):
    result = await queue.record(SyncAction.UPDATE, {**payload, "id": album_id}, token)
    return {"queued": True, "flush": result.to_dict()}


@router.delete("/{album_id}")
async def delete_album(
    album_id: str,
    token: Optional[str] = Depends(get_bearer_token),
    queue: OfflineSyncQueue = Depends(get_sync_queue)
):
    result = await queue.record(SyncAction.DELETE, {"id": album_id}, token)
    return {"queued": True, "flush": result.to_dict()}


@router.get("/queue")
async def list_queue(queue: OfflineSyncQueue = Depends(get_sync_queue)):
    entries = await queue.pending()
    return [entry.model_dump(mode="json", exclude={"token"}) for entry in entries]


@router.post("/queue/flush")
async def flush_queue(
    token: Optional[str] = Depends(get_bearer_token),
    queue: OfflineSyncQueue = Depends(get_sync_queue)
):
    result = await queue.flush(token)
    return result.to_dict()

"""
FTP API - Start, inspect and stop camera ingestion sessions.

Endpoints:
- POST /ftp/start - Start (or reuse) a session and return connection details
- GET /ftp/status - Server state and every session
- GET /ftp/credentials - Every session with connection details
- GET /ftp/credentials/cached - Last connection details handed out
- POST /ftp/test - Check a username/password pair
- POST /ftp/regenerate - Issue a new password
- POST /ftp/close - Stop the server and drop sessions
- POST /ftp/reset - Close and clear all local ingestion state
"""
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from fotorelay.dependencies import get_bearer_token, get_ingest_service
from fotorelay.services.ingest_service import IngestService

router = APIRouter(prefix="/ftp", tags=["ftp"])


# ============================================================================
# Request Schemas
# ============================================================================

class StartSessionRequest(BaseModel):
    """Request to start an ingestion session."""
    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = Field(None, description="FTP username; whitespace is stripped")
    directory: Optional[str] = Field(None, description="Existing directory the camera writes into")
    catalog_item_id: Optional[str] = Field(None, alias="catalogItemId", description="Album id")
    album_name: Optional[str] = Field(None, alias="albumName", description="Album name")
    token: Optional[str] = Field(None, description="Catalog bearer token; the Authorization header is used when omitted")


class CredentialCheckRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class RegenerateRequest(BaseModel):
    username: Optional[str] = None


def _credential_response(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "username": entry["username"],
        "password": entry["password"],
        "directory": entry["directory"],
        "albumId": entry["album_id"],
        "albumName": entry["album_name"],
        "host": entry["host"],
        "port": entry["port"],
        "mode": entry["mode"]
    }


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/start")
async def start_session(
    request: StartSessionRequest,
    header_token: Optional[str] = Depends(get_bearer_token),
    ingest: IngestService = Depends(get_ingest_service)
):
    """Start an FTP session for a camera."""
    descriptor = await ingest.start_session(
        request.username,
        request.directory,
        request.catalog_item_id,
        token=request.token or header_token,
        label=request.album_name
    )
    return descriptor.to_dict()


@router.get("/status")
async def get_status(ingest: IngestService = Depends(get_ingest_service)):
    status = ingest.status()
    return {
        "isRunning": status["is_running"],
        "credentials": [_credential_response(entry) for entry in status["credentials"]]
    }


@router.get("/credentials")
async def list_credentials(ingest: IngestService = Depends(get_ingest_service)):
    return [_credential_response(entry) for entry in ingest.list_credentials()]


@router.get("/credentials/cached")
async def get_cached_credentials(ingest: IngestService = Depends(get_ingest_service)):
    """Connection details last shown to a client, for UI reattachment."""
    return {"credentials": ingest.cached_descriptor()}


@router.post("/test")
async def test_credentials(request: CredentialCheckRequest, ingest: IngestService = Depends(get_ingest_service)):
    return {"valid": ingest.test_credentials(request.username, request.password)}


@router.post("/regenerate")
async def regenerate_password(request: RegenerateRequest, ingest: IngestService = Depends(get_ingest_service)):
    descriptor = ingest.regenerate_password(request.username)
    return {
        "success": True,
        "credentials": descriptor.to_dict() if descriptor else None
    }


@router.post("/close")
async def close_server(ingest: IngestService = Depends(get_ingest_service)):
    await ingest.close_server()
    return {"success": True}


@router.post("/reset")
async def reset_all(ingest: IngestService = Depends(get_ingest_service)):
    await ingest.reset_all()
    return {"success": True}

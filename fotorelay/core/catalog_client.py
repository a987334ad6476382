"""
HTTP client for the remote catalog API.

Calls are blocking ``requests`` calls executed on the loop's executor. Errors
are translated into the application hierarchy so callers can retry
transient failures and surface permanent ones.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from fotorelay.exceptions import RemoteRequestError, TransientNetworkError

logger = logging.getLogger(__name__)


class CatalogAPIClient:
    """Thin wrapper over the catalog's REST endpoints."""

    def __init__(self, base_url: str, timeout: int = 30, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        json: Optional[dict] = None,
        operation: str = "catalog_request"
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                headers=self._headers(token),
                timeout=self.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"{method} {path} failed: {e}", extra={'operation': operation})
            raise TransientNetworkError(f"Catalog API unreachable: {e}", operation=operation)
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}", extra={'operation': operation})
            raise RemoteRequestError(f"Catalog request failed: {e}", operation=operation)

        if response.ok:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                return response.text

        message = self._error_message(response)
        logger.warning(
            f"{method} {path} returned {response.status_code}: {message}",
            extra={'operation': operation, 'status_code': response.status_code}
        )
        if response.status_code >= 500 or response.status_code == 429:
            raise TransientNetworkError(message, status_code=response.status_code, operation=operation)
        raise RemoteRequestError(message, status_code=response.status_code, operation=operation)

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return f"Catalog API error {response.status_code}"

    async def _request_async(self, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self._request(*args, **kwargs))

    async def upload_photo(self, album_id: str, image_url: str, token: Optional[str]) -> Any:
        """Register an uploaded image URL with an album."""
        return await self._request_async(
            "POST", "/api/upload-photo", token,
            json={"albumId": album_id, "imageUrl": image_url},
            operation="register_photo"
        )

    async def list_albums(self, token: Optional[str]) -> List[dict]:
        result = await self._request_async("GET", "/api/albums", token, operation="list_albums")
        return result or []

    async def create_album(self, payload: dict, token: Optional[str]) -> Any:
        return await self._request_async("POST", "/api/albums", token, json=payload, operation="create_album")

    async def update_album(self, album_id: str, payload: dict, token: Optional[str]) -> Any:
        return await self._request_async(
            "PUT", f"/api/albums/{album_id}", token, json=payload, operation="update_album"
        )

    async def delete_album(self, album_id: str, token: Optional[str]) -> Any:
        return await self._request_async("DELETE", f"/api/albums/{album_id}", token, operation="delete_album")

    def close(self):
        self.session.close()

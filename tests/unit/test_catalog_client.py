"""
Unit tests for CatalogAPIClient.
"""
import pytest
import requests
from unittest.mock import MagicMock

from fotorelay.core.catalog_client import CatalogAPIClient
from fotorelay.exceptions import RemoteRequestError, TransientNetworkError


def _response(status, body=None, content=b"{}"):
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.content = content
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    response.text = "plain"
    return response


@pytest.mark.unit
class TestCatalogAPIClient:
    """Test cases for CatalogAPIClient."""

    def setup_method(self):
        self.session = MagicMock()
        self.client = CatalogAPIClient("http://catalog.test/", timeout=5, session=self.session)

    @pytest.mark.asyncio
    async def test_upload_photo(self):
        self.session.request.return_value = _response(200, {"success": True})

        result = await self.client.upload_photo("album-1", "https://cdn/a.jpg", "tok")

        assert result == {"success": True}
        self.session.request.assert_called_once_with(
            "POST",
            "http://catalog.test/api/upload-photo",
            json={"albumId": "album-1", "imageUrl": "https://cdn/a.jpg"},
            headers={"Content-Type": "application/json", "Authorization": "Bearer tok"},
            timeout=5
        )

    @pytest.mark.asyncio
    async def test_no_token_no_auth_header(self):
        self.session.request.return_value = _response(200, [])

        await self.client.list_albums(None)

        headers = self.session.request.call_args.kwargs["headers"]
        assert "Authorization" not in headers

    @pytest.mark.asyncio
    async def test_album_crud_routes(self):
        self.session.request.return_value = _response(204, content=b"")

        await self.client.create_album({"name": "A"}, "tok")
        await self.client.update_album("7", {"name": "B"}, "tok")
        assert await self.client.delete_album("7", "tok") is None

        calls = [(c.args[0], c.args[1]) for c in self.session.request.call_args_list]
        assert calls == [
            ("POST", "http://catalog.test/api/albums"),
            ("PUT", "http://catalog.test/api/albums/7"),
            ("DELETE", "http://catalog.test/api/albums/7"),
        ]

    def test_server_error_is_transient(self):
        self.session.request.return_value = _response(502, ValueError("no json"))

        with pytest.raises(TransientNetworkError) as exc_info:
            self.client._request("POST", "/api/upload-photo")

        assert exc_info.value.status_code == 502

    def test_rate_limit_is_transient(self):
        self.session.request.return_value = _response(429, {"error": "slow down"})

        with pytest.raises(TransientNetworkError):
            self.client._request("GET", "/api/albums")

    def test_client_error_carries_message(self):
        self.session.request.return_value = _response(404, {"error": "Album not found"})

        with pytest.raises(RemoteRequestError) as exc_info:
            self.client._request("POST", "/api/upload-photo")

        assert exc_info.value.message == "Album not found"
        assert exc_info.value.status_code == 404

    @pytest.mark.parametrize("error", [
        requests.ConnectionError("refused"),
        requests.Timeout("slow"),
    ])
    def test_network_errors_are_transient(self, error):
        self.session.request.side_effect = error

        with pytest.raises(TransientNetworkError):
            self.client._request("GET", "/api/albums")

    def test_other_request_errors_are_permanent(self):
        self.session.request.side_effect = requests.exceptions.InvalidURL("bad url")

        with pytest.raises(RemoteRequestError):
            self.client._request("GET", "/api/albums")

    def test_non_json_success_body(self):
        self.session.request.return_value = _response(200, ValueError("no json"), content=b"OK")

        assert self.client._request("GET", "/health") == "plain"

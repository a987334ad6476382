"""
Integration tests for the HTTP and WebSocket API.
"""
import base64
import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient

from fotorelay.dependencies import build_container
from fotorelay.main import create_app, status_code_for
from fotorelay.exceptions import (
    AuthError,
    DirectoryError,
    InputValidationError,
    NoPortAvailable,
    RemoteRequestError,
    TransientNetworkError,
)


class FakeCloudStore:
    def __init__(self):
        self.uploads = []

    async def upload_async(self, data, public_id, content_type, folder="albums", extension=""):
        key = f"{folder}/{public_id}{extension}"
        self.uploads.append(key)
        return {"url": f"https://cdn.test/{key}", "key": key, "size": len(data), "etag": "x"}

    def close(self):
        pass


class FakeProbe:
    def __init__(self, online=False):
        self.online = online

    async def is_online(self):
        return self.online


@pytest.fixture
def container(test_settings):
    container = build_container(test_settings)

    cloud_store = FakeCloudStore()
    catalog = MagicMock()
    catalog.upload_photo = AsyncMock(return_value={"success": True})
    catalog.create_album = AsyncMock(return_value={"id": "a1"})
    catalog.update_album = AsyncMock(return_value={"success": True})
    catalog.delete_album = AsyncMock(return_value=None)
    probe = FakeProbe(online=False)

    container.cloud_store = cloud_store
    container.catalog_client = catalog
    container.probe = probe
    container.relay.cloud_store = cloud_store
    container.relay.catalog_client = catalog
    container.sync_queue.catalog_client = catalog
    container.sync_queue.probe = probe
    container.monitor.probe = probe
    return container


@pytest.fixture
def client(test_settings, container):
    app = create_app(test_settings, container)
    with TestClient(app) as test_client:
        yield test_client


def _data_uri(data: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(data).decode()


@pytest.mark.unit
class TestErrorStatusCodes:

    @pytest.mark.parametrize("error,status", [
        (InputValidationError("x"), 400),
        (DirectoryError("/nope"), 400),
        (NoPortAvailable(2121, 10), 503),
        (AuthError("cam"), 401),
        (TransientNetworkError("x"), 503),
        (RemoteRequestError("x"), 502),
    ])
    def test_status_code_for(self, error, status):
        assert status_code_for(error) == status


@pytest.mark.integration
class TestHealthAPI:

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["ftp"] == {"state": "stopped", "port": None}
        assert "X-Process-Time" in response.headers

    def test_liveness(self, client):
        assert client.get("/api/v1/health/live").json()["status"] == "alive"


@pytest.mark.integration
class TestFTPAPI:

    def test_start_requires_fields(self, client):
        response = client.post("/api/v1/ftp/start", json={"username": "cam"})

        assert response.status_code == 400
        assert "directory" in response.json()["error"]

    def test_start_rejects_missing_directory(self, client, tmp_path):
        response = client.post("/api/v1/ftp/start", json={
            "username": "cam",
            "directory": str(tmp_path / "missing"),
            "catalogItemId": "album-1"
        })

        assert response.status_code == 400
        assert response.json() == {"error": "Directory does not exist or is inaccessible"}

    def test_session_lifecycle(self, client, ingest_dir):
        response = client.post("/api/v1/ftp/start", json={
            "username": "cam user",
            "directory": str(ingest_dir),
            "catalogItemId": "album-1",
            "albumName": "Wedding"
        }, headers={"Authorization": "Bearer tok"})

        assert response.status_code == 200
        descriptor = response.json()
        assert descriptor["username"] == "camuser"
        assert descriptor["mode"] == "Passive"
        assert len(descriptor["password"]) == 5

        status = client.get("/api/v1/ftp/status").json()
        assert status["isRunning"]
        assert status["credentials"][0]["albumId"] == "album-1"
        assert status["credentials"][0]["port"] == descriptor["port"]

        cached = client.get("/api/v1/ftp/credentials/cached").json()
        assert cached["credentials"] == descriptor

        valid = client.post("/api/v1/ftp/test", json={"username": "camuser", "password": descriptor["password"]})
        invalid = client.post("/api/v1/ftp/test", json={"username": "camuser", "password": "nope0"})
        assert valid.json() == {"valid": True}
        assert invalid.json() == {"valid": False}

        regenerated = client.post("/api/v1/ftp/regenerate", json={"username": "camuser"}).json()
        assert regenerated["success"]
        new_password = regenerated["credentials"]["password"]
        assert client.post(
            "/api/v1/ftp/test", json={"username": "camuser", "password": new_password}
        ).json() == {"valid": True}

        assert client.post("/api/v1/ftp/close").json() == {"success": True}
        status = client.get("/api/v1/ftp/status").json()
        assert status == {"isRunning": False, "credentials": []}

        assert client.post("/api/v1/ftp/reset").json() == {"success": True}
        assert client.get("/api/v1/ftp/credentials/cached").json() == {"credentials": None}

    def test_test_requires_both_fields(self, client):
        response = client.post("/api/v1/ftp/test", json={"username": "cam"})

        assert response.status_code == 400


@pytest.mark.integration
class TestUploadAPI:

    def test_upload_image_and_list_photos(self, client, container, jpeg_bytes):
        response = client.post("/api/v1/uploads/image", json={
            "image": _data_uri(jpeg_bytes),
            "catalogItemId": "album-1",
            "albumName": "Wedding",
            "ownerId": "user-1"
        }, headers={"Authorization": "Bearer tok"})

        assert response.status_code == 200
        url = response.json()["url"]
        assert url.startswith("https://cdn.test/albums/image-")
        container.catalog_client.upload_photo.assert_awaited_once_with("album-1", url, "tok")

        photos = client.get("/api/v1/photos", params={"album": "Wedding"}).json()
        assert [p["source_url"] for p in photos] == [url]

        deleted = client.post("/api/v1/photos/bulk-delete", json={"ids": [photos[0]["id"]]}).json()
        assert deleted == {"success": True, "changes": 1}
        assert client.get("/api/v1/photos", params={"album": "Wedding"}).json() == []

    def test_upload_requires_image(self, client):
        response = client.post("/api/v1/uploads/image", json={"catalogItemId": "album-1"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required field: image"}

    def test_upload_rejects_bad_base64(self, client):
        response = client.post("/api/v1/uploads/image", json={
            "image": "data:image/png;base64,%%%",
            "catalogItemId": "album-1"
        })

        assert response.status_code == 400

    def test_delete_unknown_photo(self, client):
        response = client.delete("/api/v1/photos/00000000-0000-0000-0000-000000000000")

        assert response.status_code == 404

    def test_events_stream(self, client, jpeg_bytes):
        with client.websocket_connect("/api/v1/stream") as websocket:
            client.post("/api/v1/uploads/image", json={
                "image": _data_uri(jpeg_bytes),
                "catalogItemId": "album-1",
                "albumName": "Wedding"
            })
            message = websocket.receive_json()

        assert message["action"] == "upload"
        assert message["albumName"] == "Wedding"
        assert message["imageUrl"].startswith("https://cdn.test/")


@pytest.mark.integration
class TestAlbumsAPI:

    def test_offline_changes_are_queued(self, client, container):
        response = client.post("/api/v1/albums", json={"name": "Wedding"}, headers={"Authorization": "Bearer tok"})

        assert response.status_code == 200
        assert response.json()["flush"]["online"] is False
        client.put("/api/v1/albums/7", json={"name": "Party"})
        client.delete("/api/v1/albums/7")

        queue = client.get("/api/v1/albums/queue").json()
        assert [entry["action"] for entry in queue] == ["create", "update", "delete"]
        assert queue[1]["payload"] == {"name": "Party", "id": "7"}
        assert all("token" not in entry for entry in queue)

        container.probe.online = True
        result = client.post("/api/v1/albums/queue/flush").json()

        assert result["succeeded"] == 3
        assert client.get("/api/v1/albums/queue").json() == []
        container.catalog_client.create_album.assert_awaited_once_with({"name": "Wedding"}, "tok")
        container.catalog_client.update_album.assert_awaited_once_with("7", {"name": "Party"}, "tok")

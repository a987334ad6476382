"""
Unit tests for UploadRelay.
"""
import asyncio
import base64
import logging
import pytest
from unittest.mock import AsyncMock

from fotorelay.core.retry import RetryPolicy
from fotorelay.core.session_registry import Session
from fotorelay.exceptions import (
    InputValidationError,
    RelayError,
    RemoteRequestError,
    TransientNetworkError,
    UploadRejected,
)
from fotorelay.repositories.media_repository import MediaRepository
from fotorelay.services.upload_relay import UploadPayload, UploadRelay, reencode_jpeg


class FakeCloudStore:
    """Records uploads and replays scripted failures first."""

    def __init__(self, failures=None):
        self.failures = list(failures or [])
        self.uploads = []

    async def upload_async(self, data, public_id, content_type, folder="albums", extension=""):
        self.uploads.append({
            "public_id": public_id,
            "content_type": content_type,
            "folder": folder,
            "extension": extension,
            "size": len(data)
        })
        if self.failures:
            raise self.failures.pop(0)
        key = f"{folder}/{public_id}{extension}"
        return {"url": f"https://cdn.test/{key}", "key": key, "size": len(data), "etag": "x"}


@pytest.mark.unit
class TestUploadPayload:
    """Test cases for UploadPayload."""

    def test_from_base64_with_data_uri(self, jpeg_bytes):
        encoded = "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode()

        payload = UploadPayload.from_base64(encoded)

        assert payload.data == jpeg_bytes
        assert payload.image_format == "jpeg"
        assert payload.content_type == "image/jpeg"
        assert payload.extension == ".jpg"
        assert payload.source_path is None
        assert payload.local_url is None

    def test_public_id_derived_from_content(self, jpeg_bytes, png_bytes):
        first = UploadPayload.from_bytes(jpeg_bytes)
        again = UploadPayload.from_bytes(jpeg_bytes)
        other = UploadPayload.from_bytes(png_bytes)

        assert first.public_id == again.public_id
        assert first.public_id != other.public_id
        assert first.public_id.startswith("image-")

    def test_invalid_base64(self):
        with pytest.raises(InputValidationError):
            UploadPayload.from_base64("data:image/png;base64,@@not-base64@@")

    def test_empty_payload(self):
        with pytest.raises(InputValidationError):
            UploadPayload.from_base64("   ")

    def test_from_source_path_string(self, tmp_path, jpeg_bytes):
        path = tmp_path / "a.jpg"
        path.write_bytes(jpeg_bytes)

        payload = UploadPayload.from_source(str(path))

        assert payload.source_path == str(path)
        assert payload.local_url.startswith("file://")
        assert payload.filename == "a.jpg"

    def test_unknown_format_is_generic_binary(self):
        payload = UploadPayload.from_bytes(b"\x00\x01\x02\x03")

        assert payload.content_type == "application/octet-stream"
        assert payload.extension == ""

    def test_reencode_jpeg(self, png_bytes):
        data, content_type, extension = reencode_jpeg(png_bytes)

        assert data[:3] == b"\xff\xd8\xff"
        assert (content_type, extension) == ("image/jpeg", ".jpg")

    def test_reencode_garbage_passes_through(self):
        data, content_type, _ = reencode_jpeg(b"garbage")

        assert data == b"garbage"
        assert content_type == "application/octet-stream"


@pytest.mark.unit
class TestUploadRelay:
    """Test cases for UploadRelay."""

    @pytest.fixture(autouse=True)
    def _relay(self, session_maker, broadcaster, tmp_path):
        self.session_maker = session_maker
        self.broadcaster = broadcaster
        self.events = broadcaster.subscribe()
        self.cloud = FakeCloudStore()
        self.catalog = AsyncMock()
        self.catalog.upload_photo = AsyncMock(return_value={"success": True})
        self.delays = []

        async def fake_sleep(delay):
            self.delays.append(delay)

        self.relay = UploadRelay(
            self.cloud,
            self.catalog,
            broadcaster,
            session_maker,
            retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0),
            sleep=fake_sleep
        )
        self.session = Session("camuser", "a1b2c", str(tmp_path), "album-1", "Wedding", token="tok")

    def _actions(self, drain):
        return [m["action"] for m in drain(self.events)]

    @pytest.mark.asyncio
    async def test_relay_file_happy_path(self, tmp_path, jpeg_bytes, drain):
        path = tmp_path / "IMG_0001.jpg"
        path.write_bytes(jpeg_bytes)

        record = await self.relay.relay_file(str(path), self.session)

        messages = drain(self.events)
        assert [m["action"] for m in messages] == ["pending", "add", "upload"]
        assert messages[1]["imageUrl"].startswith("file://")
        assert messages[2]["imageUrl"] == record.source_url
        assert all(m["albumName"] == "Wedding" for m in messages)

        assert record.is_cloud
        assert record.registered_at is not None
        assert record.owner_id == "camuser"
        assert len(self.cloud.uploads) == 1
        assert self.cloud.uploads[0]["extension"] == ".jpg"
        self.catalog.upload_photo.assert_awaited_once_with("album-1", record.source_url, "tok")

    @pytest.mark.asyncio
    async def test_relay_file_rejects_non_image(self, tmp_path, drain):
        path = tmp_path / "notes.jpg"
        path.write_bytes(b"\x00\x01\x02\x03")

        result = await self.relay.relay_file(str(path), self.session)

        messages = drain(self.events)
        assert result is None
        assert [m["action"] for m in messages] == ["pending", "error"]
        assert "notes.jpg" in messages[1]["error"]
        assert self.cloud.uploads == []
        self.catalog.upload_photo.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_relay_file_missing_file(self, tmp_path, drain):
        result = await self.relay.relay_file(str(tmp_path / "gone.jpg"), self.session)

        messages = drain(self.events)
        assert result is None
        assert messages[-1]["action"] == "error"
        assert messages[-1]["error"] == "File not accessible: gone.jpg"

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, jpeg_bytes, drain):
        self.cloud.failures = [
            TransientNetworkError("reset"),
            TransientNetworkError("timeout"),
        ]

        record = await self.relay.relay(jpeg_bytes, "album-1", "tok", label="Wedding")

        assert self.delays == [1.0, 2.0]
        assert len(self.cloud.uploads) == 3
        assert self._actions(drain) == ["upload"]
        assert self.catalog.upload_photo.await_count == 1
        assert record.is_cloud

    @pytest.mark.asyncio
    async def test_backoff_uses_real_time(self, jpeg_bytes):
        self.cloud.failures = [TransientNetworkError("reset"), TransientNetworkError("reset")]
        relay = UploadRelay(
            self.cloud, self.catalog, self.broadcaster, self.session_maker,
            retry_policy=RetryPolicy(max_attempts=3, base_delay=0.05, multiplier=2.0)
        )

        loop = asyncio.get_running_loop()
        started = loop.time()
        await relay.relay(jpeg_bytes, "album-1", "tok")

        assert loop.time() - started >= 0.14

    @pytest.mark.asyncio
    async def test_rejected_upload_uses_fallback_encoding(self, png_bytes):
        self.cloud.failures = [UploadRejected("bad encoding", status_code=415)]

        record = await self.relay.relay(png_bytes, "album-1", "tok")

        assert len(self.cloud.uploads) == 2
        fallback = self.cloud.uploads[1]
        assert fallback["public_id"].endswith("-fallback")
        assert fallback["content_type"] == "image/jpeg"
        assert record.source_url.endswith("-fallback.jpg")

    @pytest.mark.asyncio
    async def test_permanent_upload_failure(self, tmp_path, jpeg_bytes, drain):
        self.cloud.failures = [RemoteRequestError("forbidden", status_code=403)]
        path = tmp_path / "IMG_0002.jpg"
        path.write_bytes(jpeg_bytes)

        with pytest.raises(RelayError) as exc_info:
            await self.relay.relay(str(path), "album-1", "tok", label="Wedding")

        assert exc_info.value.stage == "cloud_upload"
        messages = drain(self.events)
        assert [m["action"] for m in messages] == ["add", "error"]
        assert messages[-1]["error"] == "Cloud upload failed: IMG_0002.jpg"
        self.catalog.upload_photo.assert_not_awaited()

        # The local record stays behind for a later cloud sync
        async with self.session_maker() as db:
            local = await MediaRepository(db).list_local_by_label("Wedding")
        assert len(local) == 1

    @pytest.mark.asyncio
    async def test_relay_is_idempotent(self, tmp_path, jpeg_bytes, drain):
        path = tmp_path / "IMG_0003.jpg"
        path.write_bytes(jpeg_bytes)

        first = await self.relay.relay(str(path), "album-1", "tok", label="Wedding")
        drain(self.events)
        second = await self.relay.relay(str(path), "album-1", "tok", label="Wedding")

        assert second.id == first.id
        assert second.source_url == first.source_url
        assert len(self.cloud.uploads) == 1
        assert self.catalog.upload_photo.await_count == 1
        assert drain(self.events) == []

    @pytest.mark.asyncio
    async def test_base64_source_emits_no_add_event(self, jpeg_bytes, drain):
        encoded = "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode()

        record = await self.relay.relay(encoded, "album-1", "tok", label="Wedding")

        assert self._actions(drain) == ["upload"]
        assert record.source_path is None

    @pytest.mark.asyncio
    async def test_invalid_base64_source(self, drain):
        with pytest.raises(InputValidationError):
            await self.relay.relay("not base64 !!", "album-1", "tok")

        assert drain(self.events) == []
        assert self.cloud.uploads == []

    @pytest.mark.asyncio
    async def test_missing_catalog_item(self, jpeg_bytes):
        with pytest.raises(InputValidationError):
            await self.relay.relay(jpeg_bytes, "", "tok")

    @pytest.mark.asyncio
    async def test_registration_failure_then_retry(self, jpeg_bytes, drain):
        self.catalog.upload_photo = AsyncMock(side_effect=RemoteRequestError("Album not found", status_code=404))

        with pytest.raises(RelayError) as exc_info:
            await self.relay.relay(jpeg_bytes, "album-1", "tok", label="Wedding")

        assert exc_info.value.stage == "register"
        messages = drain(self.events)
        assert messages[-1]["error"] == "Database save failed: upload"

        self.catalog.upload_photo = AsyncMock(return_value={"success": True})
        record = await self.relay.relay(jpeg_bytes, "album-1", "tok", label="Wedding")

        # Already in the cloud, so only registration is repeated
        assert len(self.cloud.uploads) == 1
        assert record.registered_at is not None
        self.catalog.upload_photo.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sync_album_to_cloud(self, tmp_path, jpeg_bytes, png_bytes):
        self.cloud.failures = [RemoteRequestError("down", status_code=403)] * 2
        for name, data in (("a.jpg", jpeg_bytes), ("b.png", png_bytes)):
            path = tmp_path / name
            path.write_bytes(data)
            with pytest.raises(RelayError):
                await self.relay.relay(str(path), "album-1", "tok", label="Wedding")

        records = await self.relay.sync_album_to_cloud("Wedding", "album-1", "tok")

        assert len(records) == 2
        assert all(r.is_cloud for r in records)
        assert all(r.registered_at is not None for r in records)

    @pytest.mark.asyncio
    async def test_sync_album_skips_missing_files(self, tmp_path, jpeg_bytes, drain):
        self.cloud.failures = [RemoteRequestError("down", status_code=403)]
        path = tmp_path / "a.jpg"
        path.write_bytes(jpeg_bytes)
        with pytest.raises(RelayError):
            await self.relay.relay(str(path), "album-1", "tok", label="Wedding")
        path.unlink()
        drain(self.events)

        records = await self.relay.sync_album_to_cloud("Wedding", "album-1", "tok")

        assert records[0].is_local
        assert drain(self.events)[0]["error"] == "File not accessible: a.jpg"

    @pytest.mark.asyncio
    async def test_relay_file_with_info_logging(self, tmp_path, jpeg_bytes, drain, caplog):
        path = tmp_path / "IMG_0004.jpg"
        path.write_bytes(jpeg_bytes)

        with caplog.at_level(logging.INFO):
            record = await self.relay.relay_file(str(path), self.session)

        assert record is not None and record.is_cloud
        assert self._actions(drain) == ["pending", "add", "upload"]
        audit = [r for r in caplog.records if r.name == "fotorelay.audit"]
        assert audit[-1].file_name == "IMG_0004.jpg"
        assert audit[-1].success

    @pytest.mark.asyncio
    async def test_relay_file_upload_failure_emits_error(self, tmp_path, jpeg_bytes, drain, caplog):
        self.cloud.failures = [RemoteRequestError("forbidden", status_code=403)]
        path = tmp_path / "IMG_0005.jpg"
        path.write_bytes(jpeg_bytes)

        with caplog.at_level(logging.INFO):
            result = await self.relay.relay_file(str(path), self.session)

        messages = drain(self.events)
        assert result is None
        assert [m["action"] for m in messages] == ["pending", "add", "error"]
        assert messages[-1]["error"] == "Cloud upload failed: IMG_0005.jpg"

    @pytest.mark.asyncio
    async def test_rejected_path_upload_is_one_add_upload_cycle(self, tmp_path, png_bytes, drain):
        self.cloud.failures = [UploadRejected("bad encoding", status_code=415)]
        path = tmp_path / "IMG_0006.png"
        path.write_bytes(png_bytes)

        record = await self.relay.relay_file(str(path), self.session)

        messages = drain(self.events)
        assert [m["action"] for m in messages] == ["pending", "add", "upload"]
        assert messages[-1]["imageUrl"] == record.source_url
        assert record.source_url.endswith("-fallback.jpg")
        self.catalog.upload_photo.assert_awaited_once_with("album-1", record.source_url, "tok")

    @pytest.mark.asyncio
    async def test_decoded_payload_keeps_filename(self, jpeg_bytes, drain):
        self.catalog.upload_photo = AsyncMock(side_effect=RemoteRequestError("Album not found", status_code=404))
        payload = UploadPayload.from_bytes(jpeg_bytes, filename="holiday.jpg")

        with pytest.raises(RelayError) as exc_info:
            await self.relay.relay(payload, "album-1", "tok", label="Wedding")

        assert exc_info.value.details["filename"] == "holiday.jpg"
        assert drain(self.events)[-1]["error"] == "Database save failed: holiday.jpg"

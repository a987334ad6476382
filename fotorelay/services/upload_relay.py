"""
Upload Relay Service

Pushes images to the cloud object store and registers the resulting URL with
the catalog API, reporting progress through the event broadcaster.

Relays are idempotent: the object key is derived from the content hash,
media records are unique per (catalog item, content hash), promotion to a
cloud URL happens once, and registration is skipped for records that were
already registered.
"""
import asyncio
import base64
import binascii
import hashlib
import io
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from fotorelay.core.catalog_client import CatalogAPIClient
from fotorelay.core.cloud_store import S3CloudStore
from fotorelay.core.image_validator import is_image, sniff_header
from fotorelay.core.logging_config import audit_logger
from fotorelay.core.retry import RetryPolicy
from fotorelay.core.session_registry import Session
from fotorelay.database.models import MediaRecord
from fotorelay.exceptions import (
    ApplicationError,
    InputValidationError,
    RelayError,
    UploadRejected,
    ValidationGateFailure,
)
from fotorelay.repositories.media_repository import MediaRepository
from fotorelay.services.event_broadcaster import EventBroadcaster

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")

# image family -> (content type, object key extension)
CONTENT_TYPES = {
    "jpeg": ("image/jpeg", ".jpg"),
    "png": ("image/png", ".png"),
    "gif": ("image/gif", ".gif"),
    "webp": ("image/webp", ".webp"),
    "tiff": ("image/tiff", ".tiff"),
    "bmp": ("image/bmp", ".bmp"),
    "cr3": ("image/x-canon-cr3", ".cr3"),
    "orf": ("image/x-olympus-orf", ".orf"),
    "rw2": ("image/x-panasonic-rw2", ".rw2"),
    "raf": ("image/x-fuji-raf", ".raf"),
}
GENERIC_CONTENT_TYPE = ("application/octet-stream", "")

RelaySource = Union[str, bytes, bytearray, Path, "UploadPayload"]


@dataclass
class UploadPayload:
    """Bytes to relay, whatever form they arrived in."""
    data: bytes
    filename: str
    source_path: Optional[str] = None
    image_format: Optional[str] = None
    content_hash: str = field(init=False)

    def __post_init__(self):
        if not self.data:
            raise InputValidationError(f"Empty image payload: {self.filename}", ["source"])
        self.content_hash = hashlib.sha256(self.data).hexdigest()
        if self.image_format is None:
            self.image_format = sniff_header(self.data)

    @property
    def public_id(self) -> str:
        return f"image-{self.content_hash[:32]}"

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES.get(self.image_format, GENERIC_CONTENT_TYPE)[0]

    @property
    def extension(self) -> str:
        return CONTENT_TYPES.get(self.image_format, GENERIC_CONTENT_TYPE)[1]

    @property
    def local_url(self) -> Optional[str]:
        return Path(self.source_path).resolve().as_uri() if self.source_path else None

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "UploadPayload":
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise InputValidationError(f"File not accessible: {path.name} ({e})", ["source"])
        return cls(data=data, filename=path.name, source_path=str(path))

    @classmethod
    def from_base64(cls, value: str, filename: str = "upload") -> "UploadPayload":
        """Decode a base64 string, with or without a ``data:image/...`` prefix."""
        if not value or not value.strip():
            raise InputValidationError("Image payload is empty", ["image"])
        encoded = DATA_URI_PREFIX.sub("", value.strip(), count=1)
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise InputValidationError("Invalid base64 image payload", ["image"])
        return cls(data=data, filename=filename)

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray], filename: str = "upload") -> "UploadPayload":
        return cls(data=bytes(data), filename=filename)

    @classmethod
    def from_source(cls, source: RelaySource) -> "UploadPayload":
        """
        Normalize a relay source.

        ``bytes`` are raw image data, ``Path`` objects and strings naming an
        existing file are read from disk, any other string is base64. A
        payload that is already decoded is used as is.
        """
        if isinstance(source, UploadPayload):
            return source
        if isinstance(source, (bytes, bytearray)):
            return cls.from_bytes(source)
        if isinstance(source, Path):
            return cls.from_path(source)
        if isinstance(source, str):
            if not source.startswith("data:") and os.path.isfile(source):
                return cls.from_path(source)
            return cls.from_base64(source)
        raise InputValidationError(f"Unsupported image source type: {type(source).__name__}", ["source"])


def reencode_jpeg(data: bytes) -> Tuple[bytes, str, str]:
    """
    Re-encode ``data`` as a baseline JPEG.

    Undecodable payloads come back unchanged as generic binary.

    Returns:
        (bytes, content type, extension)
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            output = io.BytesIO()
            image.convert("RGB").save(output, format="JPEG", quality=90)
            return output.getvalue(), "image/jpeg", ".jpg"
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.info(f"Fallback re-encode not possible, sending raw bytes: {e}")
        return data, GENERIC_CONTENT_TYPE[0], GENERIC_CONTENT_TYPE[1]


class UploadRelay:
    """Cloud upload, catalog registration and progress events for one payload."""

    def __init__(
        self,
        cloud_store: S3CloudStore,
        catalog_client: CatalogAPIClient,
        broadcaster: EventBroadcaster,
        session_maker: async_sessionmaker,
        retry_policy: Optional[RetryPolicy] = None,
        cloud_folder: str = "albums",
        sleep: Callable = asyncio.sleep
    ):
        self.cloud_store = cloud_store
        self.catalog_client = catalog_client
        self.broadcaster = broadcaster
        self.session_maker = session_maker
        self.retry_policy = retry_policy or RetryPolicy()
        self.cloud_folder = cloud_folder
        self.sleep = sleep

    async def relay(
        self,
        source: RelaySource,
        catalog_item_id: str,
        token: Optional[str],
        label: Optional[str] = None,
        owner_id: Optional[str] = None
    ) -> MediaRecord:
        """
        Upload ``source`` and register it with the catalog.

        Args:
            source: File path, base64 string (optionally a data URI), bytes or
                a decoded UploadPayload
            catalog_item_id: Album the image belongs to
            token: Bearer token forwarded to the catalog API
            label: Album name, used for events and record listing
            owner_id: Uploading user

        Returns:
            The media record, pointing at the cloud URL

        Raises:
            InputValidationError: Missing album id or unusable source
            RelayError: Upload or registration failed for good
        """
        if not catalog_item_id:
            raise InputValidationError("Missing required field: catalogItemId", ["catalogItemId"])

        try:
            payload = UploadPayload.from_source(source)
        except InputValidationError as e:
            if isinstance(source, (str, Path)) and os.path.exists(source):
                await self.broadcaster.error(e.message, file_path=str(source), label=label)
            raise

        async with self.session_maker() as db:
            repo = MediaRepository(db)
            record = await repo.get_by_content(catalog_item_id, payload.content_hash)

            if record is None and payload.source_path:
                record = await self._create_record(repo, payload, payload.local_url, catalog_item_id, label, owner_id)
                await self.broadcaster.added(payload.source_path, payload.local_url, label)

            if record is None or not record.is_cloud:
                try:
                    url = await self._upload(payload)
                except ApplicationError as e:
                    await self._fail("cloud_upload", payload, f"Cloud upload failed: {payload.filename}", e, label)

                if record is None:
                    record = await self._create_record(repo, payload, url, catalog_item_id, label, owner_id)
                else:
                    record = await repo.promote(record, url)
                await self.broadcaster.uploaded(record.source_url, payload.source_path, label)
            else:
                logger.info(f"{payload.filename} already uploaded as {record.source_url}")

            if record.registered_at is None:
                image_url = record.source_url
                try:
                    await self.retry_policy.run(
                        lambda: self.catalog_client.upload_photo(catalog_item_id, image_url, token),
                        operation="register_photo",
                        sleep=self.sleep
                    )
                except ApplicationError as e:
                    await self._fail("register", payload, f"Database save failed: {payload.filename}", e, label)
                record = await repo.mark_registered(record)

        audit_logger.log_relay(payload.filename, "relay", True, catalog_item_id=catalog_item_id)
        return record

    async def relay_file(self, path: str, session: Session) -> Optional[MediaRecord]:
        """
        Watcher entry point for a stable file inside a session root.

        Never raises for pipeline failures; they are reported as ``error``
        events and logged with their stage.
        """
        filename = os.path.basename(path)
        label = session.catalog_item_label
        await self.broadcaster.pending(path, label)

        if not os.path.isfile(path) or not os.access(path, os.R_OK):
            message = f"File not accessible: {filename}"
            logger.error(message, extra={'stage': 'access', 'path': path})
            await self.broadcaster.error(message, file_path=path, label=label)
            return None

        if not is_image(path):
            failure = ValidationGateFailure(filename)
            logger.warning(failure.message, extra={'stage': 'validate', 'path': path})
            await self.broadcaster.error(failure.message, file_path=path, label=label)
            return None

        try:
            return await self.relay(
                path,
                session.catalog_item_id,
                session.token,
                label=label,
                owner_id=session.username
            )
        except ApplicationError as e:
            stage = e.details.get("stage", "relay")
            logger.error(f"Relay of {filename} failed at {stage}: {e.message}", extra={
                'stage': stage,
                'path': path,
                'catalog_item_id': session.catalog_item_id
            })
            return None

    async def sync_album_to_cloud(
        self,
        label: str,
        catalog_item_id: str,
        token: Optional[str]
    ) -> List[MediaRecord]:
        """
        Upload every record of an album that still points at a local file.

        Returns:
            All records of the album after the back-fill
        """
        async with self.session_maker() as db:
            local_records = await MediaRepository(db).list_local_by_label(label)

        logger.info(f"Syncing {len(local_records)} local record(s) of album {label} to cloud")

        for record in local_records:
            path = record.source_path or record.source_url[len("file://"):]
            if not os.path.isfile(path):
                message = f"File not accessible: {os.path.basename(path)}"
                logger.warning(message, extra={'stage': 'access', 'path': path})
                await self.broadcaster.error(message, file_path=path, label=label)
                continue
            try:
                await self.relay(path, catalog_item_id or record.catalog_item_id, token, label=label)
            except ApplicationError as e:
                logger.error(f"Cloud sync of {path} failed: {e.message}")

        async with self.session_maker() as db:
            return await MediaRepository(db).list_by_label(label)

    async def _upload(self, payload: UploadPayload) -> str:
        """Upload with the native encoding, falling back to a JPEG re-encode."""
        try:
            result = await self.retry_policy.run(
                lambda: self.cloud_store.upload_async(
                    payload.data,
                    payload.public_id,
                    payload.content_type,
                    folder=self.cloud_folder,
                    extension=payload.extension
                ),
                operation="cloud_upload",
                sleep=self.sleep
            )
            return result["url"]
        except UploadRejected as e:
            logger.warning(f"Cloud store rejected {payload.filename} ({e.message}), retrying with fallback encoding")

        loop = asyncio.get_running_loop()
        data, content_type, extension = await loop.run_in_executor(None, reencode_jpeg, payload.data)
        result = await self.retry_policy.run(
            lambda: self.cloud_store.upload_async(
                data,
                f"{payload.public_id}-fallback",
                content_type,
                folder=self.cloud_folder,
                extension=extension
            ),
            operation="cloud_upload_fallback",
            sleep=self.sleep
        )
        return result["url"]

    async def _create_record(
        self,
        repo: MediaRepository,
        payload: UploadPayload,
        source_url: str,
        catalog_item_id: str,
        label: Optional[str],
        owner_id: Optional[str]
    ) -> MediaRecord:
        try:
            return await repo.create({
                "catalog_item_id": catalog_item_id,
                "catalog_item_label": label,
                "owner_id": owner_id,
                "source_url": source_url,
                "source_path": payload.source_path,
                "content_hash": payload.content_hash
            })
        except IntegrityError:
            # A concurrent relay of the same bytes won the insert
            await repo.db.rollback()
            return await repo.get_by_content(catalog_item_id, payload.content_hash)

    async def _fail(self, stage: str, payload: UploadPayload, message: str, cause: ApplicationError, label: Optional[str]):
        logger.error(f"{message}: {cause.message}", extra={'stage': stage, 'file_name': payload.filename})
        audit_logger.log_relay(payload.filename, stage, False, error=cause.message)
        await self.broadcaster.error(message, file_path=payload.source_path or payload.filename, label=label)
        raise RelayError(stage, payload.filename, message) from cause

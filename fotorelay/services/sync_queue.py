"""
Offline Sync Queue

Durable FIFO of album mutations (create/update/delete) waiting to be sent to
the catalog API. Entries are appended to a JSON array file and replayed when
the catalog is reachable. Delivery is at-least-once. Each entry keeps the
bearer token it was recorded with, so a queue replayed after a restart is
still authorized.
"""
import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from fotorelay.core.catalog_client import CatalogAPIClient
from fotorelay.core.connectivity import ConnectivityProbe
from fotorelay.core.retry import RetryPolicy
from fotorelay.exceptions import ApplicationError, InputValidationError, RemoteRequestError

logger = logging.getLogger(__name__)

# Rejections a fresher token can fix; such entries stay queued
_AUTH_STATUS_CODES = (401, 403)


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncQueueEntry(BaseModel):
    """One pending album mutation."""
    action: SyncAction
    payload: Dict[str, Any] = Field(default_factory=dict)
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    token: Optional[str] = Field(default=None, repr=False)

    def album_id(self) -> Optional[str]:
        value = self.payload.get("id")
        return str(value) if value is not None else None


@dataclass
class FlushResult:
    """Outcome of one flush pass."""
    online: bool
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    kept: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "online": self.online,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "kept": self.kept,
            "errors": self.errors
        }


def _is_auth_rejection(error: ApplicationError) -> bool:
    return isinstance(error, RemoteRequestError) and error.status_code in _AUTH_STATUS_CODES


class OfflineSyncQueue:
    """
    JSON-file backed queue of album mutations.

    A flush processes a snapshot of the queue in order. Entries that fail are
    logged and skipped, except authorization rejections, which stay queued.
    The rest of the snapshot is then removed, while entries appended during
    the flush stay for the next pass.
    """

    def __init__(
        self,
        path: Path,
        catalog_client: CatalogAPIClient,
        probe: ConnectivityProbe,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.path = Path(path)
        self.catalog_client = catalog_client
        self.probe = probe
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self.last_token: Optional[str] = None
        self._file_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()

    def _read(self) -> List[SyncQueueEntry]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Sync queue file {self.path} is unreadable, treating as empty: {e}")
            return []

        if not isinstance(raw, list):
            logger.error(f"Sync queue file {self.path} does not hold a list, treating as empty")
            return []

        entries = []
        for item in raw:
            try:
                entries.append(SyncQueueEntry.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Dropping malformed sync queue entry {item!r}: {e}")
        return entries

    def _write(self, entries: List[SyncQueueEntry]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump([entry.model_dump(mode="json") for entry in entries], f, indent=2)
        os.replace(tmp_path, self.path)

    async def pending(self) -> List[SyncQueueEntry]:
        async with self._file_lock:
            return self._read()

    async def enqueue(self, entry: SyncQueueEntry) -> SyncQueueEntry:
        """Append ``entry`` to the durable queue."""
        if entry.action in (SyncAction.UPDATE, SyncAction.DELETE) and entry.album_id() is None:
            raise InputValidationError(f"Album id is required for {entry.action.value}", ["id"])

        async with self._file_lock:
            entries = self._read()
            entries.append(entry)
            self._write(entries)

        logger.info(f"Queued album {entry.action.value}", extra={
            'action': entry.action.value,
            'album_id': entry.album_id(),
            'queue_length': len(entries)
        })
        return entry

    async def flush(self, token: Optional[str] = None) -> FlushResult:
        """
        Replay queued mutations if the catalog is reachable.

        ``token`` takes precedence over the token stored with each entry.

        Returns:
            FlushResult; ``online`` is False when nothing was attempted
        """
        if token:
            self.last_token = token
        token = token or self.last_token

        async with self._flush_lock:
            if not await self.probe.is_online():
                logger.info("Catalog unreachable, sync queue flush postponed")
                return FlushResult(online=False)

            async with self._file_lock:
                batch = self._read()

            result = FlushResult(online=True, attempted=len(batch))
            if not batch:
                return result

            logger.info(f"Flushing {len(batch)} queued album change(s)")
            kept: List[SyncQueueEntry] = []
            for entry in batch:
                try:
                    await self.retry_policy.run(
                        lambda: self._dispatch(entry, token or entry.token),
                        operation=f"Queued album {entry.action.value}"
                    )
                    result.succeeded += 1
                except ApplicationError as e:
                    result.failed += 1
                    result.errors.append(f"{entry.action.value} {entry.album_id() or ''}: {e.message}".strip())
                    if _is_auth_rejection(e):
                        kept.append(entry)
                        logger.warning(f"Queued album {entry.action.value} unauthorized, keeping it queued", extra={
                            'action': entry.action.value,
                            'album_id': entry.album_id()
                        })
                        continue
                    logger.error(f"Queued album {entry.action.value} failed, skipping: {e.message}", extra={
                        'action': entry.action.value,
                        'album_id': entry.album_id()
                    })

            result.kept = len(kept)
            async with self._file_lock:
                remaining = kept + self._read()[len(batch):]
                self._write(remaining)

            logger.info(
                f"Sync queue flush complete: {result.succeeded} succeeded, {result.failed} failed, "
                f"{len(remaining)} left"
            )
            return result

    async def record(self, action: SyncAction, payload: Dict[str, Any], token: Optional[str] = None) -> FlushResult:
        """Queue an album mutation and try to deliver it right away."""
        await self.enqueue(SyncQueueEntry(action=action, payload=payload, token=token))
        return await self.flush(token)

    async def _dispatch(self, entry: SyncQueueEntry, token: Optional[str]) -> Any:
        if entry.action == SyncAction.CREATE:
            return await self.catalog_client.create_album(entry.payload, token)

        album_id = entry.album_id()
        if album_id is None:
            raise InputValidationError(f"Album id is required for {entry.action.value}", ["id"])
        if entry.action == SyncAction.UPDATE:
            changes = {key: value for key, value in entry.payload.items() if key != "id"}
            return await self.catalog_client.update_album(album_id, changes, token)
        return await self.catalog_client.delete_album(album_id, token)


class ConnectivityMonitor:
    """
    Background task flushing the queue whenever the catalog becomes
    reachable, including once at start-up when already online.
    """

    def __init__(
        self,
        queue: OfflineSyncQueue,
        probe: ConnectivityProbe,
        interval: float = 15.0,
        token_provider: Optional[Callable[[], Optional[str]]] = None
    ):
        self.queue = queue
        self.probe = probe
        self.interval = interval
        self.token_provider = token_provider or (lambda: queue.last_token)
        self.online: Optional[bool] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="connectivity-monitor")
        logger.info(f"Connectivity monitor started (every {self.interval}s)")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Connectivity monitor stopped")

    async def check_once(self) -> bool:
        """Probe once; flush on an offline -> online transition."""
        online = await self.probe.is_online()
        if online and not self.online:
            logger.info("Catalog reachable, flushing sync queue")
            try:
                await self.queue.flush(self.token_provider())
            except OSError as e:
                logger.error(f"Sync queue flush failed: {e}")
        elif not online and self.online:
            logger.warning("Catalog became unreachable")
        self.online = online
        return online

    async def _run(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self.interval)

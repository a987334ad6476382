"""
Event Broadcasting Service

Fans ingestion lifecycle events out to every connected UI subscriber.

Each subscriber owns a bounded queue; publishing never blocks, and a
subscriber whose queue is full misses the message (logged) instead of
slowing everyone else down.
"""
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class IngestAction(str, Enum):
    """Ingest event kinds."""
    PENDING = "pending"
    ADD = "add"
    UPLOAD = "upload"
    ERROR = "error"


class IngestEvent(BaseModel):
    """One lifecycle event of a relayed file."""
    action: IngestAction
    file_path: Optional[str] = None
    image_url: Optional[str] = None
    error: Optional[str] = None
    catalog_item_label: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> dict:
        """Wire format sent to the UI (camelCase, empty fields omitted)."""
        message = {
            "action": self.action.value,
            "imageUrl": self.image_url,
            "filePath": self.file_path,
            "error": self.error,
            "albumName": self.catalog_item_label,
            "timestamp": self.timestamp.isoformat()
        }
        return {key: value for key, value in message.items() if value is not None}


class EventBroadcaster:
    """
    In-process pub/sub for ingest events.

    Transports (the WebSocket endpoint) subscribe a queue and forward what
    arrives on it.
    """

    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._subscribers: Dict[int, asyncio.Queue] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[id(queue)] = queue
        logger.info(f"Event subscriber added. Total subscribers: {len(self._subscribers)}")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if self._subscribers.pop(id(queue), None) is not None:
            logger.info(f"Event subscriber removed. Total subscribers: {len(self._subscribers)}")

    async def publish(self, event: IngestEvent) -> int:
        """
        Queue ``event`` for every subscriber.

        Returns:
            Number of subscribers the event was queued for
        """
        message = event.to_message()
        delivered = 0
        for queue in list(self._subscribers.values()):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full, dropping {event.action.value} event")

        logger.debug(f"Broadcast {event.action.value} to {delivered} subscriber(s)", extra={
            'action': event.action.value,
            'file_path': event.file_path
        })
        return delivered

    async def pending(self, file_path: str, label: Optional[str] = None) -> int:
        return await self.publish(IngestEvent(
            action=IngestAction.PENDING, file_path=file_path, catalog_item_label=label
        ))

    async def added(self, file_path: str, image_url: str, label: Optional[str] = None) -> int:
        return await self.publish(IngestEvent(
            action=IngestAction.ADD, file_path=file_path, image_url=image_url, catalog_item_label=label
        ))

    async def uploaded(self, image_url: str, file_path: Optional[str] = None, label: Optional[str] = None) -> int:
        return await self.publish(IngestEvent(
            action=IngestAction.UPLOAD, image_url=image_url, file_path=file_path, catalog_item_label=label
        ))

    async def error(self, message: str, file_path: Optional[str] = None, label: Optional[str] = None) -> int:
        return await self.publish(IngestEvent(
            action=IngestAction.ERROR, error=message, file_path=file_path, catalog_item_label=label
        ))

"""
Media Repository - Database operations for ingested media records.
"""
from typing import List, Optional, Sequence
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import and_, delete, select

from fotorelay.database.models import MediaRecord, LOCAL_URL_SCHEME, utcnow


class MediaRepository:
    """Repository for media record database operations."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def get_by_id(self, record_id: UUID) -> Optional[MediaRecord]:
        query = select(MediaRecord).filter(MediaRecord.id == record_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_content(self, catalog_item_id: str, content_hash: str) -> Optional[MediaRecord]:
        """
        Get the record holding these bytes for a catalog item.

        Args:
            catalog_item_id: Catalog item (album) identifier
            content_hash: SHA-256 hex digest of the payload

        Returns:
            MediaRecord or None if the content was never relayed
        """
        query = select(MediaRecord).filter(
            and_(
                MediaRecord.catalog_item_id == catalog_item_id,
                MediaRecord.content_hash == content_hash
            )
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_by_label(self, catalog_item_label: str) -> List[MediaRecord]:
        """Get all records of an album, oldest first."""
        query = (
            select(MediaRecord)
            .filter(MediaRecord.catalog_item_label == catalog_item_label)
            .order_by(MediaRecord.created_at)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_local_by_label(self, catalog_item_label: str) -> List[MediaRecord]:
        """Get records of an album that still point at a local file."""
        query = (
            select(MediaRecord)
            .filter(
                and_(
                    MediaRecord.catalog_item_label == catalog_item_label,
                    MediaRecord.source_url.startswith(LOCAL_URL_SCHEME)
                )
            )
            .order_by(MediaRecord.created_at)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create(self, record_data: dict) -> MediaRecord:
        """
        Create new media record.

        Args:
            record_data: Dictionary with record data

        Returns:
            Created MediaRecord object
        """
        record = MediaRecord(**record_data)
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def promote(self, record: MediaRecord, cloud_url: str) -> MediaRecord:
        """
        Point a record at its cloud URL.

        Only local references are promoted; a cloud URL is never replaced.
        """
        if not record.source_url.startswith(LOCAL_URL_SCHEME):
            return record
        record.source_url = cloud_url
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def mark_registered(self, record: MediaRecord) -> MediaRecord:
        record.registered_at = utcnow()
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def delete(self, record_id: UUID) -> bool:
        """
        Delete media record.

        Returns:
            True if deleted, False if not found
        """
        record = await self.get_by_id(record_id)
        if not record:
            return False

        await self.db.delete(record)
        await self.db.commit()
        return True

    async def bulk_delete(self, record_ids: Sequence[UUID]) -> int:
        """
        Delete several records at once.

        Returns:
            Number of rows removed
        """
        if not record_ids:
            return 0
        stmt = delete(MediaRecord).where(MediaRecord.id.in_(list(record_ids)))
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount

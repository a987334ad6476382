"""
SQLAlchemy ORM Models for FotoRelay.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, Text, Index, UniqueConstraint, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import uuid


LOCAL_URL_SCHEME = "file://"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class MediaRecord(Base):
    """
    MediaRecord model - One ingested image attached to a catalog item.

    ``source_url`` starts as a ``file://`` reference for files picked up from
    disk and is promoted in place to the cloud URL once uploaded. It never
    goes back to a local reference.
    """
    __tablename__ = "media_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    catalog_item_label: Mapped[Optional[str]] = mapped_column(String(255))
    catalog_item_id: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[Optional[str]] = mapped_column(String(255))

    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    source_path: Mapped[Optional[str]] = mapped_column(String(1024))
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    caption: Mapped[Optional[str]] = mapped_column(Text)

    # Metadata
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    registered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("catalog_item_id", "content_hash", name="uq_media_item_content"),
        Index("idx_media_label", "catalog_item_label"),
    )

    @property
    def is_local(self) -> bool:
        return self.source_url.startswith(LOCAL_URL_SCHEME)

    @property
    def is_cloud(self) -> bool:
        return not self.is_local

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "catalog_item_label": self.catalog_item_label,
            "catalog_item_id": self.catalog_item_id,
            "owner_id": self.owner_id,
            "source_url": self.source_url,
            "source_path": self.source_path,
            "content_hash": self.content_hash,
            "caption": self.caption,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None
        }

    def __repr__(self):
        return f"<MediaRecord(id={self.id}, item={self.catalog_item_id}, url={self.source_url})>"

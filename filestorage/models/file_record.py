"""
File record database model.

This module defines the FileRecord model. The host application owns the
row; the storage layer reads it and writes only the backend locator
columns (backend_type, backend_path, backend_metadata, sync_status,
last_sync_date).
"""
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Enum, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from filestorage.database import Base
from filestorage.utils.datetime import utcnow

if TYPE_CHECKING:
    from filestorage.models.entity_file import EntityFile
    from filestorage.models.sync_log import SyncLogEntry


class BackendType(StrEnum):
    LOCAL = "local"
    S3 = "s3"
    GCS = "gcs"
    AZURE = "azure"
    SPACES = "spaces"


class SyncStatus(StrEnum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    EXCLUDED = "excluded"


def _enum_column(enum_cls):
    """VARCHAR-backed enum column storing member values."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


class FileRecord(Base):
    """
    File record with its storage locator.

    Attributes:
        id: Primary key
        uri: Legacy local path, used only while backend_path is empty
        mime_type: MIME type of the stored bytes
        file_type_id: Host file type classification
        description: Free-text description
        upload_date: Upload timestamp (ordering and age filters)
        size: Size in bytes when known (estimation and verification)
        backend_type: Backend currently holding the bytes
        backend_path: Backend-relative path; authoritative once set
        backend_metadata: Storage-layer bookkeeping (config_name, synced_at,
            original_backend, cdn_url)
        sync_status: pending, synced, failed or excluded; NULL on legacy rows
        last_sync_date: Timestamp of the last successful sync
    """

    __tablename__ = "files"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    uri: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_type_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    upload_date: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now())
    size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    backend_type: Mapped[BackendType] = mapped_column(
        _enum_column(BackendType), default=BackendType.LOCAL, server_default="local"
    )
    backend_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    backend_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    sync_status: Mapped[SyncStatus | None] = mapped_column(
        _enum_column(SyncStatus), nullable=True, default=SyncStatus.PENDING, server_default="pending"
    )
    last_sync_date: Mapped[datetime | None] = mapped_column(nullable=True)

    entities: Mapped[list["EntityFile"]] = relationship(
        "EntityFile", back_populates="file", cascade="all, delete-orphan", passive_deletes=True
    )
    sync_logs: Mapped[list["SyncLogEntry"]] = relationship(
        "SyncLogEntry", back_populates="file", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("idx_files_backend_type", "backend_type"),
        Index("idx_files_sync_status", "sync_status"),
        Index("idx_files_last_sync_date", "last_sync_date"),
    )

    @property
    def locator(self) -> str | None:
        """Path used to find the bytes: backend_path when set, else uri."""
        return self.backend_path or self.uri

    @property
    def config_name(self) -> str | None:
        return (self.backend_metadata or {}).get("config_name")

    def __repr__(self) -> str:
        return (
            f"<FileRecord(id={self.id}, backend_type={self.backend_type}, "
            f"sync_status={self.sync_status})>"
        )

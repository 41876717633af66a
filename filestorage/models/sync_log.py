"""
Sync log database model.

Append-only audit trail: one row per attempted storage operation.
"""
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from filestorage.database import Base
from filestorage.utils.datetime import utcnow

if TYPE_CHECKING:
    from filestorage.models.file_record import FileRecord


class SyncOperation(StrEnum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    SYNC = "sync"
    MOVE = "move"
    COPY = "copy"
    VERIFY = "verify"
    MIGRATE = "migrate"


class LogStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class SyncLogEntry(Base):
    """Audit entry for one storage operation attempt."""

    __tablename__ = "sync_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    file_id: Mapped[int] = mapped_column(ForeignKey("files.id", ondelete="CASCADE"))
    operation: Mapped[SyncOperation] = mapped_column(
        Enum(SyncOperation, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e])
    )
    source_backend: Mapped[str | None] = mapped_column(String(32), nullable=True)
    target_backend: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[LogStatus] = mapped_column(
        Enum(LogStatus, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e])
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sync_date: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now())
    actor: Mapped[str | None] = mapped_column(String(64), nullable=True)

    file: Mapped["FileRecord"] = relationship("FileRecord", back_populates="sync_logs")

    __table_args__ = (
        Index("idx_sync_logs_file_id", "file_id"),
        Index("idx_sync_logs_status", "status"),
        Index("idx_sync_logs_sync_date", "sync_date"),
        Index("idx_sync_logs_target_operation", "target_backend", "operation"),
    )

    def __repr__(self) -> str:
        return (
            f"<SyncLogEntry(id={self.id}, file_id={self.file_id}, "
            f"operation={self.operation}, status={self.status})>"
        )

"""
Storage task database model.

Queue rows for work deferred out of the sync batch, currently the transfer
of files above the large-file threshold.
"""
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Enum, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from filestorage.database import Base
from filestorage.utils.datetime import utcnow


class TaskType(StrEnum):
    LARGE_FILE_SYNC = "large_file_sync"


class TaskStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StorageTask(Base):
    """
    Deferred storage task.

    Attributes:
        id: Primary key
        task_type: Kind of work queued
        file_id: File the task operates on
        target_backend: Backend the file should end up on
        target_config: Named configuration of the target backend
        status: pending, processing, completed or failed
        error_message: Failure reason for failed tasks
        created_at: Enqueue timestamp
        completed_at: Completion timestamp
    """

    __tablename__ = "storage_tasks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    task_type: Mapped[TaskType] = mapped_column(
        Enum(TaskType, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e])
    )
    file_id: Mapped[int] = mapped_column(ForeignKey("files.id", ondelete="CASCADE"))
    target_backend: Mapped[str] = mapped_column(String(32))
    target_config: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        default=TaskStatus.PENDING,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("idx_storage_tasks_type_status", "task_type", "status"),
        Index("idx_storage_tasks_file_id", "file_id"),
    )

    def __repr__(self) -> str:
        return f"<StorageTask(id={self.id}, task_type={self.task_type}, status={self.status})>"

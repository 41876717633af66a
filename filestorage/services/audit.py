"""
Audit log service.

Append-only writer and query helpers for SyncLogEntry. Entries are never
updated or deleted here; history, progress and ETA queries read them in
write order.
"""
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from filestorage.logging_config import setup_logging
from filestorage.models.sync_log import LogStatus, SyncLogEntry, SyncOperation

logger = setup_logging()

DEFAULT_ACTOR = "system"


class AuditLog:
    """Append-only ledger of storage operations, bound to a session."""

    def __init__(self, db: Session, actor: str = DEFAULT_ACTOR):
        self.db = db
        self.actor = actor

    def record(
        self,
        file_id: int,
        operation: SyncOperation | str,
        status: LogStatus | str,
        source_backend: str | None = None,
        target_backend: str | None = None,
        error_message: str | None = None,
        file_size: int | None = None,
        duration_ms: int | None = None,
        commit: bool = True,
    ) -> SyncLogEntry:
        """
        Append one entry.

        Args:
            commit: Commit immediately. Pass False to stage the entry in the
                same transaction as a record update.
        """
        entry = SyncLogEntry(
            file_id=file_id,
            operation=operation,
            status=status,
            source_backend=str(source_backend) if source_backend else None,
            target_backend=str(target_backend) if target_backend else None,
            error_message=error_message,
            file_size=file_size,
            duration_ms=duration_ms,
            actor=self.actor,
        )
        self.db.add(entry)
        if commit:
            self.db.commit()
        else:
            self.db.flush()

        if status == LogStatus.FAILED:
            logger.warning(
                f"{operation} failed for file {file_id} "
                f"({source_backend} -> {target_backend}): {error_message}"
            )
        return entry

    def history(
        self,
        operation: SyncOperation | str | None = None,
        file_id: int | None = None,
        status: LogStatus | str | None = None,
        limit: int = 50,
    ) -> list[SyncLogEntry]:
        """Entries newest first, optionally filtered."""
        stmt = select(SyncLogEntry)
        if operation is not None:
            stmt = stmt.where(SyncLogEntry.operation == operation)
        if file_id is not None:
            stmt = stmt.where(SyncLogEntry.file_id == file_id)
        if status is not None:
            stmt = stmt.where(SyncLogEntry.status == status)
        stmt = stmt.order_by(SyncLogEntry.sync_date.desc(), SyncLogEntry.id.desc()).limit(limit)
        return list(self.db.scalars(stmt))

    def latest_failure(self, file_id: int) -> SyncLogEntry | None:
        failures = self.history(file_id=file_id, status=LogStatus.FAILED, limit=1)
        return failures[0] if failures else None

    def average_duration_ms(self, target_backend: str, sample: int = 100) -> float | None:
        """
        Mean duration of the most recent successful operations into a backend.

        Returns:
            Average in milliseconds, or None when there is no history
        """
        recent = (
            select(SyncLogEntry.duration_ms)
            .where(
                SyncLogEntry.target_backend == str(target_backend),
                SyncLogEntry.status == LogStatus.SUCCESS,
                SyncLogEntry.duration_ms.is_not(None),
            )
            .order_by(SyncLogEntry.sync_date.desc(), SyncLogEntry.id.desc())
            .limit(sample)
            .subquery()
        )
        average = self.db.scalar(select(func.avg(recent.c.duration_ms)))
        return float(average) if average is not None else None

    def failed_count(self) -> int:
        return self.db.scalar(
            select(func.count(SyncLogEntry.id)).where(SyncLogEntry.status == LogStatus.FAILED)
        ) or 0

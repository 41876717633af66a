"""
Sync engine.

Batch job reconciling file records with the backend they should live on.
Meant to be run periodically (e.g., hourly via cron) and on demand; only
one batch may run at a time, enforced with a lock file.

sync_status state machine:
    pending  -> synced | failed
    failed   -> synced | failed   (retry)
    synced   -> synced | failed   (verify)
    excluded is never processed automatically
"""
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from filestorage.database import SessionLocal
from filestorage.logging_config import setup_logging
from filestorage.models.entity_file import EntityFile
from filestorage.models.file_record import FileRecord, SyncStatus
from filestorage.models.storage_task import StorageTask, TaskStatus, TaskType
from filestorage.models.sync_log import LogStatus, SyncOperation
from filestorage.services.audit import AuditLog
from filestorage.services.policy import StoragePolicy
from filestorage.services.registry import BackendRegistry
from filestorage.services.results import BatchResult, TransferOutcome
from filestorage.services.rules import resolve_backend_type, should_delete_source
from filestorage.services.transfer import (
    STATUS_QUEUED,
    STATUS_SKIPPED,
    STATUS_SYNCED,
    FileTransfer,
    source_locator,
)
from filestorage.storage.exceptions import NotFoundError, StorageError
from filestorage.utils.datetime import utcnow
from filestorage.utils.locks import file_lock

logger = setup_logging()


class SyncMode(StrEnum):
    PENDING = "pending"
    FAILED = "failed"
    VERIFY = "verify"
    ALL = "all"


@dataclass
class SyncFilters:
    """Optional narrowing of a sync cohort."""

    file_types: list[int] | None = None
    days_old: int | None = None
    entity_types: list[str] | None = None


def entity_filter(entity_types: list[str], prefix: str):
    """Subquery of file ids attached to any of the given entity types."""
    tables = set()
    for entity_type in entity_types:
        tables.add(entity_type)
        if prefix and not entity_type.startswith(prefix):
            tables.add(f"{prefix}{entity_type}")
    return select(EntityFile.file_id).where(EntityFile.entity_table.in_(tables))


class SyncEngine:
    """
    Processes cohorts of file records against a target backend.

    Args:
        db: Database session; the engine commits once per file
        registry: Backend registry used to resolve adapters
        policy: Storage policy (batch size, large-file threshold, rules)
        actor: Name recorded in the audit log
    """

    def __init__(
        self,
        db: Session,
        registry: BackendRegistry,
        policy: StoragePolicy,
        actor: str = "sync",
    ):
        self.db = db
        self.registry = registry
        self.policy = policy
        self.audit = AuditLog(db, actor=actor)
        self.transfer = FileTransfer(db, registry, policy, self.audit)

    def candidates(
        self,
        mode: SyncMode | str,
        batch_size: int | None = None,
        filters: SyncFilters | None = None,
    ) -> list[FileRecord]:
        """
        Select the records a batch will process, oldest upload first.

        Raises:
            ValueError: If mode is not a valid sync mode
        """
        mode = SyncMode(mode)
        filters = filters or SyncFilters()
        stmt = select(FileRecord)

        if mode == SyncMode.PENDING:
            stmt = stmt.where(
                or_(FileRecord.sync_status == SyncStatus.PENDING, FileRecord.sync_status.is_(None))
            )
        elif mode == SyncMode.FAILED:
            stmt = stmt.where(FileRecord.sync_status == SyncStatus.FAILED)
        elif mode == SyncMode.VERIFY:
            stmt = stmt.where(FileRecord.sync_status == SyncStatus.SYNCED)
        else:
            stmt = stmt.where(
                or_(FileRecord.sync_status != SyncStatus.EXCLUDED, FileRecord.sync_status.is_(None))
            )

        if filters.file_types:
            stmt = stmt.where(FileRecord.file_type_id.in_(filters.file_types))
        if filters.days_old:
            stmt = stmt.where(FileRecord.upload_date < utcnow() - timedelta(days=filters.days_old))
        if filters.entity_types:
            stmt = stmt.where(
                FileRecord.id.in_(entity_filter(filters.entity_types, self.policy.entity_prefix))
            )

        stmt = stmt.order_by(FileRecord.upload_date.asc(), FileRecord.id.asc())
        stmt = stmt.limit(batch_size or self.policy.sync_batch_size)
        return list(self.db.scalars(stmt))

    async def run_batch(
        self,
        mode: SyncMode | str = SyncMode.PENDING,
        target_backend: str | None = None,
        target_config: str | None = None,
        batch_size: int | None = None,
        filters: SyncFilters | None = None,
    ) -> BatchResult:
        """
        Run one sync batch.

        Individual file failures are counted, never raised.

        Args:
            mode: pending, failed, verify or all
            target_backend: Backend files should end up on (default backend
                when omitted)
            target_config: Named configuration of the target backend
            batch_size: Maximum records to process (policy default: 100)
            filters: Optional file type / age / entity filters

        Returns:
            BatchResult with counters and a per-file error map

        Raises:
            ValueError: If mode is invalid
            SyncAlreadyRunningError: If another batch holds the lock
        """
        mode = SyncMode(mode)
        result = BatchResult()

        if not self.policy.enabled:
            logger.info("File storage sync is disabled, skipping batch")
            return result

        if target_backend is None:
            target_backend, target_config = self.registry.default_target()

        started = time.monotonic()
        with file_lock(self.policy.lock_path, timeout=self.policy.lock_timeout):
            records = self.candidates(mode, batch_size, filters)
            logger.info(
                f"Sync batch started: mode={mode}, target={target_backend}, "
                f"candidates={len(records)}"
            )

            for record in records:
                result.processed += 1
                file_id = record.id
                try:
                    outcome = await self.sync_file(record, target_backend, target_config, mode)
                except Exception as e:
                    result.add_failure(file_id, e)
                    continue

                if outcome.status == STATUS_SYNCED:
                    result.success += 1
                    result.total_size += outcome.size
                elif outcome.status == STATUS_QUEUED:
                    result.skipped += 1
                    result.queued += 1
                else:
                    result.skipped += 1
                result.warnings.extend(outcome.cleanup_warnings)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Sync batch finished: processed={result.processed}, success={result.success}, "
            f"failed={result.failed}, skipped={result.skipped}, queued={result.queued}, "
            f"duration_ms={result.duration_ms}"
        )
        return result

    async def sync_file(
        self,
        record: FileRecord,
        target_backend: str,
        target_config: str | None = None,
        mode: SyncMode | str = SyncMode.PENDING,
        defer_large_files: bool = True,
    ) -> TransferOutcome:
        """
        Sync one file record.

        On failure the record is marked failed, the failure is appended to
        the audit log, and the exception is re-raised.

        Raises:
            MissingPathError: If the record has no locator
            StorageError: If the transfer fails
        """
        mode = SyncMode(mode)
        target_backend = str(target_backend)

        if mode == SyncMode.VERIFY:
            return await self.verify_file(record)

        source_type = resolve_backend_type(record)
        if source_type == target_backend:
            try:
                source_locator(record)
            except Exception as e:
                logger.error(f"Sync failed for file {record.id}: {e}")
                self.transfer.mark_failed(record, SyncOperation.SYNC, target_backend, e)
                raise
            record.sync_status = SyncStatus.SYNCED
            self.audit.record(
                record.id,
                SyncOperation.SYNC,
                LogStatus.SKIPPED,
                source_backend=source_type,
                target_backend=target_backend,
                error_message="Already on target backend",
                commit=False,
            )
            self.db.commit()
            return TransferOutcome(
                file_id=record.id,
                status=STATUS_SKIPPED,
                source_backend=source_type,
                target_backend=target_backend,
                target_path=record.locator,
            )

        try:
            outcome = await self.transfer.transfer(
                record,
                target_backend,
                target_config,
                operation=SyncOperation.SYNC,
                delete_source=should_delete_source(self.policy, source_type, target_backend),
                large_file_threshold=self.policy.large_file_threshold if defer_large_files else None,
            )
        except Exception as e:
            logger.error(f"Sync failed for file {record.id}: {e}", exc_info=not isinstance(e, StorageError))
            self.transfer.mark_failed(record, SyncOperation.SYNC, target_backend, e)
            raise

        if outcome.status == STATUS_QUEUED:
            self._enqueue_large_file(record, target_backend, target_config, outcome.size)

        return outcome

    async def verify_file(self, record: FileRecord) -> TransferOutcome:
        """
        Confirm a synced record's object still exists where it points.

        Never writes bytes and never touches the locator columns; only
        sync_status may change (to failed when the object is gone).
        """
        source_type = resolve_backend_type(record)
        try:
            path = source_locator(record)
            backend = self.registry.get_backend_for_record(record, self.db)
            if not await backend.exists(path):
                raise NotFoundError(path, f"File missing from {source_type} storage: {path}")
        except Exception as e:
            self.transfer.mark_failed(record, SyncOperation.VERIFY, source_type, e)
            raise

        record.sync_status = SyncStatus.SYNCED
        self.audit.record(
            record.id,
            SyncOperation.VERIFY,
            LogStatus.SUCCESS,
            source_backend=source_type,
            target_backend=source_type,
            commit=False,
        )
        self.db.commit()
        return TransferOutcome(
            file_id=record.id,
            status=STATUS_SYNCED,
            source_backend=source_type,
            target_backend=source_type,
            target_path=path,
        )

    def _enqueue_large_file(
        self,
        record: FileRecord,
        target_backend: str,
        target_config: str | None,
        size: int,
    ) -> None:
        existing = self.db.scalars(
            select(StorageTask).where(
                StorageTask.file_id == record.id,
                StorageTask.task_type == TaskType.LARGE_FILE_SYNC,
                StorageTask.status.in_([TaskStatus.PENDING, TaskStatus.PROCESSING]),
            )
        ).first()

        if existing is None:
            self.db.add(
                StorageTask(
                    task_type=TaskType.LARGE_FILE_SYNC,
                    file_id=record.id,
                    target_backend=target_backend,
                    target_config=target_config,
                    status=TaskStatus.PENDING,
                )
            )

        record.sync_status = SyncStatus.PENDING
        self.audit.record(
            record.id,
            SyncOperation.SYNC,
            LogStatus.SKIPPED,
            source_backend=resolve_backend_type(record),
            target_backend=target_backend,
            error_message="Queued for background processing",
            file_size=size,
            commit=False,
        )
        self.db.commit()
        logger.info(f"File {record.id} ({size} bytes) queued for background sync to {target_backend}")

    async def process_large_file_queue(self, limit: int = 10) -> BatchResult:
        """
        Transfer files previously deferred for being over the size threshold.

        Should be run by a background worker. Shares the batch lock.
        """
        result = BatchResult()
        started = time.monotonic()

        with file_lock(self.policy.lock_path, timeout=self.policy.lock_timeout):
            tasks = list(
                self.db.scalars(
                    select(StorageTask)
                    .where(
                        StorageTask.task_type == TaskType.LARGE_FILE_SYNC,
                        StorageTask.status == TaskStatus.PENDING,
                    )
                    .order_by(StorageTask.created_at, StorageTask.id)
                    .limit(limit)
                )
            )

            for task in tasks:
                result.processed += 1
                task.status = TaskStatus.PROCESSING
                self.db.commit()

                record = self.db.get(FileRecord, task.file_id)
                try:
                    if record is None:
                        raise StorageError(f"File record not found: {task.file_id}")
                    outcome = await self.sync_file(
                        record, task.target_backend, task.target_config, defer_large_files=False
                    )
                except Exception as e:
                    task.status = TaskStatus.FAILED
                    task.error_message = str(e)
                    task.completed_at = utcnow()
                    self.db.commit()
                    result.add_failure(task.file_id, e)
                    continue

                task.status = TaskStatus.COMPLETED
                task.completed_at = utcnow()
                self.db.commit()
                if outcome.status == STATUS_SYNCED:
                    result.success += 1
                    result.total_size += outcome.size
                else:
                    result.skipped += 1
                result.warnings.extend(outcome.cleanup_warnings)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result


async def run_scheduled_sync(
    mode: str = SyncMode.PENDING,
    batch_size: int | None = None,
    db: Session | None = None,
    registry: BackendRegistry | None = None,
) -> BatchResult:
    """
    Entry point for the periodic job.

    Args:
        mode: Sync mode
        batch_size: Records per run (policy default when omitted)
        db: Optional database session. If not provided, creates a new one.
        registry: Optional registry. If not provided, uses the shared one.
    """
    from filestorage.dependencies.storage import get_policy, get_registry

    close_db = False
    if db is None:
        db = SessionLocal()
        close_db = True

    try:
        engine = SyncEngine(db, registry or get_registry(), get_policy())
        return await engine.run_batch(mode, batch_size=batch_size)
    finally:
        if close_db:
            db.close()

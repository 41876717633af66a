"""
Migration engine.

Operator-initiated bulk moves of files between backends: planning,
execution, verification, rollback, pointer snapshots and progress/ETA.
Single-file moves go through the same FileTransfer used by the sync engine.
"""
import time
from dataclasses import asdict, dataclass
from datetime import timedelta

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from filestorage.logging_config import setup_logging
from filestorage.models.file_record import BackendType, FileRecord, SyncStatus
from filestorage.models.migration_snapshot import MigrationSnapshot, MigrationSnapshotEntry
from filestorage.models.sync_log import LogStatus, SyncLogEntry, SyncOperation
from filestorage.services.audit import AuditLog
from filestorage.services.policy import StoragePolicy
from filestorage.services.registry import BackendRegistry
from filestorage.services.results import (
    BatchResult,
    MigrationPlan,
    SnapshotRestoreResult,
    VerifyResult,
)
from filestorage.services.rules import resolve_backend_type
from filestorage.services.statistics import collect_statistics
from filestorage.services.sync import entity_filter
from filestorage.services.transfer import STATUS_SYNCED, FileTransfer, source_locator
from filestorage.storage.exceptions import MissingPathError, NotFoundError, StorageError
from filestorage.utils.datetime import utcnow
from filestorage.utils.paths import format_file_size

logger = setup_logging()

PLAN_SAMPLE_SIZE = 100
ETA_SAMPLE_SIZE = 100
FALLBACK_SECONDS_PER_FILE = 2.0
# Throughput assumed by plan(): 1 MiB per second
ASSUMED_BYTES_PER_SECOND = 1024 * 1024

# Rough storage cost per GB/month in USD, advisory only
COST_PER_GB_MONTH = {
    BackendType.S3.value: 0.023,
    BackendType.SPACES.value: 0.02,
    BackendType.GCS.value: 0.020,
    BackendType.AZURE.value: 0.018,
    BackendType.LOCAL.value: 0.10,
}
DEFAULT_COST_PER_GB_MONTH = 0.02

HIGH_LOCAL_SHARE = 0.5


class SnapshotNotFoundError(ValueError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Snapshot not found: {name}")


class SnapshotExistsError(ValueError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Snapshot already exists: {name}")


@dataclass
class MigrationCriteria:
    """
    Cohort selection for plan/execute.

    Attributes:
        target_backend: Backend files should move to (required)
        target_config: Named configuration of the target backend
        source_backend: Only files currently on this backend
        file_types: Only these host file type ids
        entity_types: Only files attached to these entity types
        min_age_days: Only files uploaded more than this many days ago
        min_size: Only files of at least this many bytes
        max_size: Only files of at most this many bytes
    """

    target_backend: str
    target_config: str | None = None
    source_backend: str | None = None
    file_types: list[int] | None = None
    entity_types: list[str] | None = None
    min_age_days: int | None = None
    min_size: int | None = None
    max_size: int | None = None

    def __post_init__(self):
        if not self.target_backend:
            raise ValueError("Target storage is required")

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


def estimate_cost(storage_type: str, size_bytes: int) -> float:
    """Monthly storage cost estimate for ``size_bytes`` on a backend type."""
    size_gb = size_bytes / (1024 * 1024 * 1024)
    rate = COST_PER_GB_MONTH.get(str(storage_type), DEFAULT_COST_PER_GB_MONTH)
    return round(size_gb * rate, 2)


def _not_on(target: str):
    condition = FileRecord.backend_type != target
    if target != BackendType.LOCAL:
        # legacy rows without a backend type live on local storage
        condition = or_(condition, FileRecord.backend_type.is_(None))
    return condition


def _on(target: str):
    condition = FileRecord.backend_type == target
    if target == BackendType.LOCAL:
        condition = or_(condition, FileRecord.backend_type.is_(None))
    return condition


class MigrationEngine:
    """
    Bulk migration between backends.

    Args:
        db: Database session
        registry: Backend registry used to resolve adapters
        policy: Storage policy
        actor: Name recorded in the audit log
    """

    def __init__(
        self,
        db: Session,
        registry: BackendRegistry,
        policy: StoragePolicy,
        actor: str = "migration",
    ):
        self.db = db
        self.registry = registry
        self.policy = policy
        self.audit = AuditLog(db, actor=actor)
        self.transfer = FileTransfer(db, registry, policy, self.audit)

    def _candidate_conditions(self, criteria: MigrationCriteria) -> list:
        conditions = [_not_on(criteria.target_backend)]

        if criteria.source_backend:
            conditions.append(_on(criteria.source_backend))
        if criteria.file_types:
            conditions.append(FileRecord.file_type_id.in_(criteria.file_types))
        if criteria.entity_types:
            conditions.append(
                FileRecord.id.in_(entity_filter(criteria.entity_types, self.policy.entity_prefix))
            )
        if criteria.min_age_days:
            conditions.append(
                FileRecord.upload_date < utcnow() - timedelta(days=criteria.min_age_days)
            )
        if criteria.min_size is not None:
            conditions.append(FileRecord.size >= criteria.min_size)
        if criteria.max_size is not None:
            conditions.append(FileRecord.size <= criteria.max_size)

        return conditions

    def candidates(self, criteria: MigrationCriteria, limit: int | None = None) -> list[FileRecord]:
        stmt = (
            select(FileRecord)
            .where(and_(*self._candidate_conditions(criteria)))
            .order_by(FileRecord.upload_date.asc(), FileRecord.id.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        return list(self.db.scalars(stmt))

    def count_candidates(self, criteria: MigrationCriteria) -> int:
        return self.db.scalar(
            select(func.count(FileRecord.id)).where(and_(*self._candidate_conditions(criteria)))
        ) or 0

    async def plan(self, criteria: MigrationCriteria) -> MigrationPlan:
        """
        Estimate a migration without moving any bytes.

        Sizes are measured on up to 100 candidates and extrapolated over the
        full candidate count. Sampled files whose object is missing are left
        out of the average; any other backend error aborts the plan.

        Raises:
            StorageError: If a backend cannot be queried
        """
        total_count = self.count_candidates(criteria)
        sample = self.candidates(criteria, limit=min(total_count, PLAN_SAMPLE_SIZE))

        measured_size = 0
        measured = 0
        for record in sample:
            try:
                path = source_locator(record)
                backend = self.registry.get_backend_for_record(record, self.db)
                measured_size += await backend.get_size(path)
            except (NotFoundError, MissingPathError) as e:
                logger.debug(f"Skipping file {record.id} in migration sample: {e}")
                continue
            measured += 1

        avg_size = measured_size / measured if measured else 0
        total_size = int(avg_size * total_count)

        plan = MigrationPlan(
            file_count=total_count,
            total_size=total_size,
            total_size_formatted=format_file_size(total_size),
            estimated_time=int(total_size / ASSUMED_BYTES_PER_SECOND),
            estimated_cost=estimate_cost(criteria.target_backend, total_size),
            avg_file_size=int(avg_size),
            sample_size=len(sample),
            criteria=criteria.to_dict(),
        )
        logger.info(
            f"Migration plan to {criteria.target_backend}: {plan.file_count} files, "
            f"{plan.total_size_formatted}"
        )
        return plan

    async def execute(
        self,
        criteria: MigrationCriteria,
        batch_size: int | None = None,
        delete_source: bool = False,
        verify: bool = False,
        dry_run: bool = False,
    ) -> BatchResult:
        """
        Migrate one batch of candidates.

        Args:
            criteria: Cohort selection
            batch_size: Maximum files to process (policy default: 50)
            delete_source: Remove source objects after each successful move
            verify: Assert target existence and size equality after writing;
                a mismatch fails that file
            dry_run: Count candidates as skipped without touching any backend

        Returns:
            BatchResult; per-file failures are in ``errors``
        """
        result = BatchResult()
        started = time.monotonic()
        records = self.candidates(criteria, limit=batch_size or self.policy.migration_batch_size)

        for record in records:
            result.processed += 1

            if dry_run:
                result.skipped += 1
                continue

            file_id = record.id
            try:
                outcome = await self.migrate_file(
                    record,
                    criteria.target_backend,
                    criteria.target_config,
                    delete_source=delete_source,
                    verify=verify,
                )
            except Exception as e:
                result.add_failure(file_id, e)
                continue

            if outcome.status == STATUS_SYNCED:
                result.success += 1
                result.total_size += outcome.size
            else:
                result.skipped += 1
            result.warnings.extend(outcome.cleanup_warnings)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Migration batch to {criteria.target_backend} finished: "
            f"processed={result.processed}, success={result.success}, "
            f"failed={result.failed}, skipped={result.skipped}, dry_run={dry_run}"
        )
        return result

    async def migrate_file(
        self,
        record: FileRecord,
        target_backend: str,
        target_config: str | None = None,
        delete_source: bool = False,
        verify: bool = False,
        operation: SyncOperation = SyncOperation.MIGRATE,
    ):
        """
        Move one file; on failure mark it failed and re-raise.

        Large files are never deferred here; an operator-initiated migration
        moves everything it selects.
        """
        try:
            return await self.transfer.transfer(
                record,
                target_backend,
                target_config,
                operation=operation,
                verify=verify,
                delete_source=delete_source,
            )
        except Exception as e:
            logger.error(
                f"Failed to migrate file {record.id}: {e}",
                exc_info=not isinstance(e, StorageError),
            )
            self.transfer.mark_failed(record, operation, target_backend, e)
            raise

    async def verify(self, target_backend: str, limit: int = 100) -> VerifyResult:
        """
        Re-check files already on a backend.

        Existence is always checked; size equality only when the record has
        a size. Nothing is written.
        """
        result = VerifyResult()
        records = self.db.scalars(
            select(FileRecord)
            .where(_on(str(target_backend)))
            .order_by(FileRecord.id)
            .limit(limit)
        )

        for record in records:
            result.checked += 1
            try:
                path = source_locator(record)
                backend = self.registry.get_backend_for_record(record, self.db)
                if not await backend.exists(path):
                    result.add_invalid(record.id, "File does not exist in storage")
                    continue
                if record.size:
                    actual = await backend.get_size(path)
                    if actual != record.size:
                        result.add_invalid(
                            record.id, f"Size mismatch (expected: {record.size}, actual: {actual})"
                        )
                        continue
            except StorageError as e:
                result.add_invalid(record.id, e)
                continue
            result.valid += 1

        return result

    async def rollback(self, current_backend: str, batch_size: int | None = None) -> BatchResult:
        """
        Move files on ``current_backend`` back to the backend recorded as
        ``original_backend`` when they were migrated.

        A file without that breadcrumb fails individually; its origin is
        never guessed.
        """
        result = BatchResult()
        started = time.monotonic()
        records = list(
            self.db.scalars(
                select(FileRecord)
                .where(_on(str(current_backend)))
                .order_by(FileRecord.id)
                .limit(batch_size or self.policy.migration_batch_size)
            )
        )

        for record in records:
            result.processed += 1
            file_id = record.id
            original = (record.backend_metadata or {}).get("original_backend")

            if not original:
                error = "Original storage not found in metadata"
                self.audit.record(
                    file_id,
                    SyncOperation.MIGRATE,
                    LogStatus.FAILED,
                    source_backend=resolve_backend_type(record),
                    error_message=error,
                )
                result.add_failure(file_id, error)
                continue

            try:
                outcome = await self.migrate_file(record, original)
            except Exception as e:
                result.add_failure(file_id, e)
                continue

            result.success += 1
            result.total_size += outcome.size
            result.warnings.extend(outcome.cleanup_warnings)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    def create_snapshot(self, name: str) -> MigrationSnapshot:
        """
        Capture every file's (backend_type, backend_path, uri) under a name.

        Raises:
            SnapshotExistsError: If the name is taken
        """
        snapshot = MigrationSnapshot(name=name)
        count = 0
        for file_id, backend_type, backend_path, uri in self.db.execute(
            select(FileRecord.id, FileRecord.backend_type, FileRecord.backend_path, FileRecord.uri)
        ):
            snapshot.entries.append(
                MigrationSnapshotEntry(
                    file_id=file_id,
                    backend_type=str(backend_type) if backend_type else None,
                    backend_path=backend_path,
                    uri=uri,
                )
            )
            count += 1
        snapshot.file_count = count

        self.db.add(snapshot)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise SnapshotExistsError(name) from e

        self.db.refresh(snapshot)
        logger.info(f"Created migration snapshot '{name}' with {count} files")
        return snapshot

    def restore_snapshot(self, name: str) -> SnapshotRestoreResult:
        """
        Write captured pointers back verbatim. Bytes are not touched.

        Files deleted since the snapshot are reported as failures.

        Raises:
            SnapshotNotFoundError: If no snapshot has that name
        """
        snapshot = self._get_snapshot(name)
        result = SnapshotRestoreResult()

        for entry in snapshot.entries:
            record = self.db.get(FileRecord, entry.file_id)
            if record is None:
                result.failed += 1
                result.errors[entry.file_id] = f"File record not found: {entry.file_id}"
                continue
            record.backend_type = entry.backend_type
            record.backend_path = entry.backend_path
            record.uri = entry.uri
            result.restored += 1

        self.db.commit()
        logger.info(
            f"Restored migration snapshot '{name}': restored={result.restored}, "
            f"failed={result.failed}"
        )
        return result

    def list_snapshots(self) -> list[MigrationSnapshot]:
        return list(
            self.db.scalars(
                select(MigrationSnapshot).order_by(
                    MigrationSnapshot.created_at.desc(), MigrationSnapshot.id.desc()
                )
            )
        )

    def delete_snapshot(self, name: str) -> None:
        """
        Raises:
            SnapshotNotFoundError: If no snapshot has that name
        """
        snapshot = self._get_snapshot(name)
        self.db.delete(snapshot)
        self.db.commit()
        logger.info(f"Deleted migration snapshot '{name}'")

    def _get_snapshot(self, name: str) -> MigrationSnapshot:
        snapshot = self.db.scalars(
            select(MigrationSnapshot).where(MigrationSnapshot.name == name)
        ).first()
        if snapshot is None:
            raise SnapshotNotFoundError(name)
        return snapshot

    def get_progress(self, target_backend: str) -> dict:
        target_backend = str(target_backend)
        completed = self.db.scalar(
            select(func.count(FileRecord.id)).where(_on(target_backend))
        ) or 0
        remaining = self.db.scalar(
            select(func.count(FileRecord.id)).where(_not_on(target_backend))
        ) or 0
        total = completed + remaining

        return {
            "total": total,
            "completed": completed,
            "remaining": remaining,
            "percentage": round(completed / total * 100, 1) if total else 0,
            "target_storage": target_backend,
        }

    def estimate_time_remaining(self, target_backend: str) -> dict:
        """
        ETA from the mean duration of the last 100 successful transfers into
        the target, or 2 seconds per file without history.
        """
        progress = self.get_progress(target_backend)
        avg_ms = self.audit.average_duration_ms(target_backend, sample=ETA_SAMPLE_SIZE)
        per_file = avg_ms / 1000 if avg_ms is not None else FALLBACK_SECONDS_PER_FILE
        seconds = int(progress["remaining"] * per_file)

        return {
            "remaining_files": progress["remaining"],
            "avg_time_per_file": round(per_file, 2),
            "estimated_seconds": seconds,
            "estimated_hours": round(seconds / 3600, 2),
            "estimated_completion": (utcnow() + timedelta(seconds=seconds)).isoformat(),
        }

    def history(self, limit: int = 50) -> list[SyncLogEntry]:
        return self.audit.history(operation=SyncOperation.MIGRATE, limit=limit)

    def generate_report(self) -> dict:
        """Storage distribution with recommendations."""
        stats = collect_statistics(self.db, self.policy.entity_prefix)
        total = stats["total_files"]

        by_storage = {
            storage_type: {
                "count": count,
                "percentage": round(count / total * 100, 1) if total else 0,
            }
            for storage_type, count in stats["by_storage"].items()
        }

        recommendations = []
        local_count = stats["by_storage"].get(BackendType.LOCAL.value, 0)
        if total and local_count / total > HIGH_LOCAL_SHARE:
            recommendations.append({
                "type": "cost_savings",
                "priority": "high",
                "title": "High local storage usage",
                "description": (
                    f"{local_count} files ({round(local_count / total * 100)}%) are on local "
                    f"storage. Consider migrating to cloud storage for cost savings."
                ),
                "action": "Migrate large files to S3/Spaces",
            })

        failed_count = self.db.scalar(
            select(func.count(FileRecord.id)).where(FileRecord.sync_status == SyncStatus.FAILED)
        ) or 0
        if failed_count:
            recommendations.append({
                "type": "maintenance",
                "priority": "medium",
                "title": "Failed sync operations",
                "description": (
                    f"{failed_count} files have failed sync status. "
                    f"These should be reviewed and retried."
                ),
                "action": "Run sync job with mode=failed",
            })

        return {
            "summary": stats,
            "by_storage": by_storage,
            "by_entity": stats["by_entity"],
            "recommendations": recommendations,
        }

    def failed_files(self, limit: int = 50) -> list[dict]:
        """Failed files with their most recent failure message."""
        records = self.db.scalars(
            select(FileRecord)
            .where(FileRecord.sync_status == SyncStatus.FAILED)
            .order_by(FileRecord.id)
            .limit(limit)
        )

        failed = []
        for record in records:
            entry = self.audit.latest_failure(record.id)
            failed.append({
                "file_id": record.id,
                "uri": record.uri,
                "mime_type": record.mime_type,
                "storage_type": resolve_backend_type(record),
                "upload_date": record.upload_date,
                "error": entry.error_message if entry and entry.error_message else "Unknown error",
                "last_attempt": entry.sync_date if entry else None,
            })
        return failed

    async def retry_failed(
        self,
        target_backend: str,
        target_config: str | None = None,
        limit: int = 50,
    ) -> BatchResult:
        """Re-attempt failed files, verifying each copy."""
        result = BatchResult()
        started = time.monotonic()
        records = list(
            self.db.scalars(
                select(FileRecord)
                .where(FileRecord.sync_status == SyncStatus.FAILED)
                .order_by(FileRecord.upload_date.asc(), FileRecord.id.asc())
                .limit(limit)
            )
        )

        for record in records:
            result.processed += 1
            file_id = record.id
            try:
                outcome = await self.migrate_file(
                    record, target_backend, target_config, verify=True
                )
            except Exception as e:
                result.add_failure(file_id, e)
                continue
            result.success += 1
            result.total_size += outcome.size

        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

"""
Single-file transfer between backends.

Shared by the sync and migration engines: stream the bytes from the
record's current backend to a target backend, optionally verify the copy,
switch the record's locator, then optionally remove the source object.
"""
import time

from sqlalchemy import select
from sqlalchemy.orm import Session

from filestorage.logging_config import setup_logging
from filestorage.models.entity_file import EntityFile
from filestorage.models.file_record import FileRecord, SyncStatus
from filestorage.models.sync_log import LogStatus, SyncOperation
from filestorage.services.audit import AuditLog
from filestorage.services.policy import StoragePolicy
from filestorage.services.registry import BackendRegistry
from filestorage.services.results import TransferOutcome
from filestorage.services.rules import resolve_backend_type, resolve_visibility
from filestorage.storage.base import StorageBackend
from filestorage.storage.exceptions import (
    MissingPathError,
    NotFoundError,
    StorageError,
    VerificationMismatchError,
)
from filestorage.utils.datetime import utcnow
from filestorage.utils.paths import generate_path, get_filename, normalize_entity_type

logger = setup_logging()

STATUS_SYNCED = "synced"
STATUS_SKIPPED = "skipped"
STATUS_QUEUED = "queued"


def resolve_entity_type(db: Session, file_id: int, prefix: str = "") -> str | None:
    """
    Normalized entity type owning a file, or None when it has no association.

    Example: a file attached through ``civicrm_contact`` resolves to ``contact``.
    """
    entity_table = db.scalars(
        select(EntityFile.entity_table)
        .where(EntityFile.file_id == file_id)
        .order_by(EntityFile.id)
        .limit(1)
    ).first()
    if not entity_table:
        return None
    return normalize_entity_type(entity_table, prefix)


def source_locator(record: FileRecord) -> str:
    """
    Path of a record's bytes on its current backend.

    Raises:
        MissingPathError: If the record has neither backend_path nor uri
    """
    path = record.locator
    if not path:
        raise MissingPathError(record.id)
    return path


class FileTransfer:
    """Moves one file record's bytes to a target backend."""

    def __init__(
        self,
        db: Session,
        registry: BackendRegistry,
        policy: StoragePolicy,
        audit: AuditLog,
    ):
        self.db = db
        self.registry = registry
        self.policy = policy
        self.audit = audit

    async def transfer(
        self,
        record: FileRecord,
        target_type: str,
        target_config: str | None = None,
        operation: SyncOperation = SyncOperation.SYNC,
        verify: bool = False,
        delete_source: bool = False,
        large_file_threshold: int | None = None,
    ) -> TransferOutcome:
        """
        Copy a file to the target backend and switch its record over.

        Args:
            record: File record to move
            target_type: Target backend type
            target_config: Named configuration of the target backend
            operation: Operation recorded in the audit log
            verify: Assert target existence and size equality after writing
            delete_source: Remove the source object after the record switch
            large_file_threshold: Files above this size are returned as
                ``queued`` without any transfer (None disables the check)

        Returns:
            TransferOutcome. Source deletion problems are reported in
            ``cleanup_warnings`` and never change the outcome.

        Raises:
            MissingPathError: If the record has no locator
            NotFoundError: If the source object is missing
            VerificationMismatchError: If verification fails
            StorageError: On any backend failure
        """
        started = time.monotonic()
        source_type = resolve_backend_type(record)
        source_path = source_locator(record)
        source = self.registry.get_backend_for_record(record, self.db)
        target = self.registry.get_backend(target_type, target_config, self.db)

        if not await source.exists(source_path):
            raise NotFoundError(source_path, f"Source file does not exist: {source_path}")

        size = await source.get_size(source_path)
        if large_file_threshold is not None and size > large_file_threshold:
            return TransferOutcome(
                file_id=record.id,
                status=STATUS_QUEUED,
                source_backend=source_type,
                target_backend=str(target_type),
                size=size,
            )

        entity_type = resolve_entity_type(self.db, record.id, self.policy.entity_prefix)
        target_path = generate_path(
            filename=get_filename(source_path),
            entity_type=entity_type,
            mime_type=record.mime_type,
            timestamp=record.upload_date,
            file_id=record.id,
        )
        visibility = resolve_visibility(self.policy, entity_type)

        await target.write(
            target_path,
            source.read_stream(source_path),
            mime_type=record.mime_type,
            visibility=visibility,
            metadata={"file_id": str(record.id)},
        )

        if verify:
            await self._verify_copy(target, target_path, size)

        metadata = dict(record.backend_metadata or {})
        metadata.update(
            config_name=target_config,
            synced_at=utcnow().isoformat(),
            original_backend=source_type,
            original_path=source_path,
        )
        record.backend_type = str(target_type)
        record.backend_path = target_path
        record.backend_metadata = metadata
        record.sync_status = SyncStatus.SYNCED
        record.last_sync_date = utcnow()
        if record.size is None:
            record.size = size

        duration_ms = int((time.monotonic() - started) * 1000)
        self.audit.record(
            record.id,
            operation,
            LogStatus.SUCCESS,
            source_backend=source_type,
            target_backend=target_type,
            file_size=size,
            duration_ms=duration_ms,
            commit=False,
        )
        self.db.commit()

        outcome = TransferOutcome(
            file_id=record.id,
            status=STATUS_SYNCED,
            source_backend=source_type,
            target_backend=str(target_type),
            target_path=target_path,
            size=size,
            duration_ms=duration_ms,
        )

        if delete_source and not (source_type == str(target_type) and source_path == target_path):
            warning = await self._best_effort_delete(record.id, source, source_path)
            if warning:
                outcome.cleanup_warnings.append(warning)

        return outcome

    def mark_failed(
        self,
        record: FileRecord,
        operation: SyncOperation,
        target_type: str | None,
        error: Exception,
    ) -> None:
        """Flag a record as failed and append the failure to the audit log."""
        self.db.rollback()
        record.sync_status = SyncStatus.FAILED
        self.audit.record(
            record.id,
            operation,
            LogStatus.FAILED,
            source_backend=resolve_backend_type(record),
            target_backend=target_type,
            error_message=str(error),
            file_size=record.size,
            commit=False,
        )
        self.db.commit()

    async def _verify_copy(self, target: StorageBackend, target_path: str, expected_size: int) -> None:
        if not await target.exists(target_path):
            raise VerificationMismatchError(
                f"File verification failed: target file does not exist ({target_path})"
            )

        target_size = await target.get_size(target_path)
        if target_size != expected_size:
            warning = await self._best_effort_delete(None, target, target_path)
            if warning:
                logger.warning(warning)
            raise VerificationMismatchError(
                f"File verification failed: size mismatch "
                f"(source: {expected_size}, target: {target_size})"
            )

    async def _best_effort_delete(
        self,
        file_id: int | None,
        backend: StorageBackend,
        path: str,
    ) -> str | None:
        """Best-effort delete; returns a warning instead of raising."""
        try:
            await backend.delete(path)
        except StorageError as e:
            warning = f"Failed to delete {backend.get_type()}:{path} after transfer: {e}"
            logger.warning(f"File {file_id}: {warning}" if file_id else warning)
            return warning
        return None

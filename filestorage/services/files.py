"""
File service.

Host-facing file operations: validated uploads routed by placement rules,
downloads, deletion, URLs, metadata, and moving single files between
backends.
"""
import time
from dataclasses import dataclass, field
from typing import AsyncIterator

from sqlalchemy.orm import Session

from filestorage.logging_config import setup_logging
from filestorage.models.entity_file import EntityFile
from filestorage.models.file_record import FileRecord, SyncStatus
from filestorage.models.sync_log import LogStatus, SyncOperation
from filestorage.services.audit import AuditLog
from filestorage.services.policy import StoragePolicy
from filestorage.services.registry import BackendRegistry
from filestorage.services.results import BatchResult
from filestorage.services.rules import FileInfo, resolve_backend_type, resolve_visibility
from filestorage.services.statistics import collect_statistics
from filestorage.services.transfer import FileTransfer, source_locator
from filestorage.storage.base import Content, clamp_ttl
from filestorage.storage.exceptions import FileSizeExceededError, StorageError
from filestorage.utils.datetime import utcnow
from filestorage.utils.paths import (
    clean_filename,
    format_file_size,
    generate_path,
    get_filename,
    mime_for_extension,
    normalize_entity_type,
)

logger = setup_logging()


@dataclass
class UploadValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)


class UploadValidationError(ValueError):
    """Raised when an upload is rejected by validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


def guess_mime_type(filename: str) -> str:
    _, dot, extension = get_filename(filename).rpartition(".")
    return mime_for_extension(extension) if dot else "application/octet-stream"


class FileService:
    """
    File operations bound to a session, registry and policy.

    Args:
        db: Database session
        registry: Backend registry
        policy: Storage policy
        actor: Name recorded in the audit log
    """

    def __init__(
        self,
        db: Session,
        registry: BackendRegistry,
        policy: StoragePolicy,
        actor: str = "api",
    ):
        self.db = db
        self.registry = registry
        self.policy = policy
        self.audit = AuditLog(db, actor=actor)
        self.transfer = FileTransfer(db, registry, policy, self.audit)

    def get_record(self, file_id: int) -> FileRecord:
        """
        Raises:
            ValueError: If the file record does not exist
        """
        record = self.db.get(FileRecord, file_id)
        if record is None:
            raise ValueError(f"File not found: {file_id}")
        return record

    def validate_upload(
        self,
        filename: str,
        size: int | None,
        mime_type: str | None = None,
    ) -> UploadValidation:
        """
        Check an upload against the size limit, blocked MIME types and
        filename rules.
        """
        errors = []
        mime_type = mime_type or guess_mime_type(filename)

        if size is not None and size > self.policy.max_upload_bytes:
            errors.append(
                f"File size ({format_file_size(size)}) exceeds maximum allowed "
                f"({format_file_size(self.policy.max_upload_bytes)})"
            )

        if mime_type in self.policy.blocked_mime_types:
            errors.append(f"File type '{mime_type}' is blocked for security reasons")

        name = get_filename(filename)
        if not name or name != clean_filename(name):
            errors.append("Filename contains invalid characters")

        return UploadValidation(valid=not errors, errors=errors)

    async def upload(
        self,
        content: Content,
        filename: str,
        mime_type: str | None = None,
        size: int | None = None,
        entity_type: str | None = None,
        entity_id: int | None = None,
        file_type_id: int | None = None,
        description: str | None = None,
        storage_type: str | None = None,
        storage_config: str | None = None,
        visibility: str | None = None,
    ) -> FileRecord:
        """
        Store a new file and create its record.

        The backend is chosen by placement rules unless storage_type is
        given. Filenames are cleaned and made unique; the original name is
        kept in backend_metadata.

        Args:
            content: Bytes or an async iterator of chunks
            filename: Original filename
            mime_type: MIME type (guessed from the extension when omitted)
            size: Size in bytes, required for placement by size when
                content is a stream
            entity_type: Owning entity type, e.g. "activity"
            entity_id: Owning entity id; an association row is created
                when both entity fields are given

        Raises:
            FileSizeExceededError: If the file is over the upload limit
            UploadValidationError: If the file is otherwise rejected
            StorageError: If the backend write fails
        """
        if isinstance(content, (bytes, bytearray)):
            size = len(content)
        mime_type = mime_type or guess_mime_type(filename)

        if size is not None and size > self.policy.max_upload_bytes:
            raise FileSizeExceededError(size, self.policy.max_upload_bytes)

        validation = self.validate_upload(clean_filename(get_filename(filename)), size, mime_type)
        if not validation.valid:
            raise UploadValidationError(validation.errors)

        normalized_entity = (
            normalize_entity_type(entity_type, self.policy.entity_prefix) if entity_type else None
        )
        if storage_type:
            target_type, target_config = str(storage_type), storage_config
        else:
            target_type, target_config = self.registry.resolve_new_file_target(
                FileInfo(
                    mime_type=mime_type,
                    size=size,
                    entity_type=normalized_entity,
                    file_type_id=file_type_id,
                )
            )
        backend = self.registry.get_backend(target_type, target_config, self.db)

        now = utcnow()
        path = generate_path(
            filename=filename,
            entity_type=normalized_entity,
            mime_type=mime_type,
            timestamp=now,
        )
        visibility = visibility or resolve_visibility(self.policy, normalized_entity)

        started = time.monotonic()
        await backend.write(
            path,
            content,
            mime_type=mime_type,
            visibility=visibility,
            metadata={"original_filename": clean_filename(get_filename(filename))},
        )
        if size is None:
            size = await backend.get_size(path)

        record = FileRecord(
            uri=get_filename(path),
            mime_type=mime_type,
            file_type_id=file_type_id,
            description=description,
            upload_date=now,
            size=size,
            backend_type=target_type,
            backend_path=path,
            backend_metadata={
                "config_name": target_config,
                "original_filename": get_filename(filename),
                "uploaded_at": now.isoformat(),
                "visibility": visibility,
            },
            sync_status=SyncStatus.SYNCED,
            last_sync_date=now,
        )
        self.db.add(record)
        self.db.flush()

        if entity_type and entity_id is not None:
            entity_table = entity_type
            if self.policy.entity_prefix and not entity_table.startswith(self.policy.entity_prefix):
                entity_table = f"{self.policy.entity_prefix}{entity_table}"
            self.db.add(EntityFile(entity_table=entity_table, entity_id=entity_id, file_id=record.id))

        self.audit.record(
            record.id,
            SyncOperation.UPLOAD,
            LogStatus.SUCCESS,
            target_backend=target_type,
            file_size=size,
            duration_ms=int((time.monotonic() - started) * 1000),
            commit=False,
        )
        self.db.commit()
        self.db.refresh(record)

        logger.info(f"Uploaded file {record.id} to {target_type}:{path} ({size} bytes)")
        return record

    async def download(self, file_id: int) -> bytes:
        """
        Raises:
            ValueError: If the file record does not exist
            MissingPathError: If the record has no locator
            NotFoundError: If the object is missing from its backend
        """
        record = self.get_record(file_id)
        backend = self.registry.get_backend_for_record(record, self.db)
        return await backend.read(source_locator(record))

    def download_stream(self, file_id: int) -> tuple[FileRecord, AsyncIterator[bytes]]:
        record = self.get_record(file_id)
        backend = self.registry.get_backend_for_record(record, self.db)
        return record, backend.read_stream(source_locator(record))

    async def delete(self, file_id: int, delete_from_storage: bool = True) -> list[str]:
        """
        Delete a file's bytes and its record.

        A backend failure while removing the bytes does not keep the record;
        it is returned as a warning.

        Returns:
            Cleanup warnings
        """
        record = self.get_record(file_id)
        source_type = resolve_backend_type(record)
        warnings = []

        if delete_from_storage and record.locator:
            try:
                backend = self.registry.get_backend_for_record(record, self.db)
                await backend.delete(record.locator)
            except StorageError as e:
                warning = f"Failed to delete file {file_id} from {source_type} storage: {e}"
                logger.warning(warning)
                warnings.append(warning)

        self.db.delete(record)
        self.db.commit()
        logger.info(f"Deleted file {file_id}")
        return warnings

    async def get_url(self, file_id: int, ttl: int | None = None) -> str:
        """
        URL for a file.

        A ``cdn_url`` in the record's metadata takes precedence. Otherwise
        the backend decides between a public and a signed URL, with ttl
        clamped to the policy maximum.
        """
        record = self.get_record(file_id)
        path = source_locator(record)

        cdn_url = (record.backend_metadata or {}).get("cdn_url")
        if cdn_url:
            return f"{cdn_url.rstrip('/')}/{path}"

        ttl = clamp_ttl(self.policy.url_default_ttl if ttl is None else ttl, self.policy.url_max_ttl)
        backend = self.registry.get_backend_for_record(record, self.db)
        return await backend.get_url(path, ttl)

    async def get_metadata(self, file_id: int, include_storage_metadata: bool = False) -> dict:
        record = self.get_record(file_id)
        metadata = {
            "id": record.id,
            "filename": get_filename(record.locator or ""),
            "mime_type": record.mime_type,
            "storage_type": resolve_backend_type(record),
            "storage_path": record.backend_path,
            "upload_date": record.upload_date,
            "description": record.description,
            "sync_status": str(record.sync_status) if record.sync_status else None,
            "size": record.size,
        }

        if include_storage_metadata and record.locator:
            try:
                backend = self.registry.get_backend_for_record(record, self.db)
                object_metadata = await backend.get_metadata(record.locator)
            except StorageError as e:
                logger.warning(f"Failed to get storage metadata for file {file_id}: {e}")
            else:
                metadata["size"] = object_metadata.size
                metadata["size_formatted"] = format_file_size(object_metadata.size)
                metadata["last_modified"] = object_metadata.last_modified
                metadata["visibility"] = object_metadata.visibility

        return metadata

    async def copy_to_storage(
        self,
        file_id: int,
        target_type: str,
        target_config: str | None = None,
        delete_source: bool = False,
    ) -> FileRecord:
        """
        Move one file to another backend.

        A file already on the target type is returned unchanged. The
        previous backend is recorded as ``original_backend`` so the move
        can be rolled back.

        Raises:
            ValueError: If the file record does not exist
            StorageError: If the transfer fails (the record is marked failed)
        """
        record = self.get_record(file_id)
        if resolve_backend_type(record) == str(target_type):
            return record

        try:
            outcome = await self.transfer.transfer(
                record,
                target_type,
                target_config,
                operation=SyncOperation.COPY,
                delete_source=delete_source,
            )
        except Exception as e:
            self.transfer.mark_failed(record, SyncOperation.COPY, target_type, e)
            raise

        for warning in outcome.cleanup_warnings:
            logger.warning(warning)
        return record

    async def batch_update_storage(
        self,
        file_ids: list[int],
        target_type: str,
        target_config: str | None = None,
    ) -> BatchResult:
        result = BatchResult()
        started = time.monotonic()

        for file_id in file_ids:
            result.processed += 1
            try:
                await self.copy_to_storage(file_id, target_type, target_config)
            except (ValueError, StorageError) as e:
                result.add_failure(file_id, e)
                continue
            result.success += 1

        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    def get_statistics(self) -> dict:
        return collect_statistics(self.db, self.policy.entity_prefix)


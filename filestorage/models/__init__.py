from filestorage.models.backend_config import BackendConfig
from filestorage.models.entity_file import EntityFile
from filestorage.models.file_record import BackendType, FileRecord, SyncStatus
from filestorage.models.migration_snapshot import MigrationSnapshot, MigrationSnapshotEntry
from filestorage.models.storage_task import StorageTask, TaskStatus, TaskType
from filestorage.models.sync_log import LogStatus, SyncLogEntry, SyncOperation

__all__ = [
    "BackendConfig",
    "BackendType",
    "EntityFile",
    "FileRecord",
    "LogStatus",
    "MigrationSnapshot",
    "MigrationSnapshotEntry",
    "StorageTask",
    "SyncLogEntry",
    "SyncOperation",
    "SyncStatus",
    "TaskStatus",
    "TaskType",
]

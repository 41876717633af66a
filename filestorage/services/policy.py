"""
Storage policy.

StoragePolicy is the explicit configuration object handed to the registry
and the engines. It is built once from Settings so that nothing below the
service layer reads process-wide settings directly, and tests can build
one by hand.
"""
from dataclasses import dataclass, field
from typing import Any

from filestorage.config import Settings


@dataclass(frozen=True)
class PlacementRule:
    """
    Criterion choosing a backend for new files.

    Every criterion that is set must match. mime_pattern is a glob where
    ``*`` matches any run of characters, anchored to the whole MIME type.
    """

    backend: str
    config_name: str | None = None
    mime_pattern: str | None = None
    min_size: int | None = None
    max_size: int | None = None
    entity_types: frozenset[str] | None = None
    file_type_ids: frozenset[int] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlacementRule":
        entity_types = data.get("entity_types")
        file_type_ids = data.get("file_type_ids")
        return cls(
            backend=data.get("backend") or data.get("storage_type"),
            config_name=data.get("config_name"),
            mime_pattern=data.get("mime_pattern"),
            min_size=data.get("min_size"),
            max_size=data.get("max_size"),
            entity_types=frozenset(entity_types) if entity_types else None,
            file_type_ids=frozenset(int(i) for i in file_type_ids) if file_type_ids else None,
        )


@dataclass(frozen=True)
class VisibilityRule:
    entity_type: str
    visibility: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VisibilityRule":
        return cls(entity_type=data["entity_type"], visibility=data["visibility"])


@dataclass(frozen=True)
class DeleteRule:
    """Per-(source, target) override of the delete-after-sync flag."""

    source: str
    target: str
    delete: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeleteRule":
        return cls(
            source=data.get("source") or data.get("from"),
            target=data.get("target") or data.get("to"),
            delete=bool(data.get("delete", False)),
        )


@dataclass(frozen=True)
class StoragePolicy:
    enabled: bool = True
    default_backend_type: str = "local"
    default_backend_config: str | None = None
    local_path: str = "storage/files"
    local_url: str = "/files"
    entity_prefix: str = "civicrm_"
    placement_rules: tuple[PlacementRule, ...] = field(default_factory=tuple)
    visibility_rules: tuple[VisibilityRule, ...] = field(default_factory=tuple)
    default_visibility: str = "private"
    delete_after_sync: bool = False
    delete_rules: tuple[DeleteRule, ...] = field(default_factory=tuple)
    sync_batch_size: int = 100
    migration_batch_size: int = 50
    large_file_threshold: int = 50 * 1024 * 1024
    lock_path: str = "storage/.sync.lock"
    lock_timeout: float = 0
    url_default_ttl: int = 3600
    url_max_ttl: int = 86400
    max_upload_bytes: int = 50 * 1024 * 1024
    blocked_mime_types: frozenset[str] = frozenset(
        {"application/x-executable", "application/x-sh", "text/x-php"}
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StoragePolicy":
        return cls(
            enabled=settings.FILESTORAGE_ENABLED,
            default_backend_type=settings.DEFAULT_BACKEND_TYPE,
            default_backend_config=settings.DEFAULT_BACKEND_CONFIG,
            local_path=settings.LOCAL_STORAGE_PATH,
            local_url=settings.LOCAL_STORAGE_URL,
            entity_prefix=settings.ENTITY_TABLE_PREFIX,
            placement_rules=tuple(PlacementRule.from_dict(r) for r in settings.PLACEMENT_RULES),
            visibility_rules=tuple(VisibilityRule.from_dict(r) for r in settings.VISIBILITY_RULES),
            default_visibility=settings.DEFAULT_VISIBILITY,
            delete_after_sync=settings.DELETE_AFTER_SYNC,
            delete_rules=tuple(DeleteRule.from_dict(r) for r in settings.DELETE_RULES),
            sync_batch_size=settings.SYNC_BATCH_SIZE,
            migration_batch_size=settings.MIGRATION_BATCH_SIZE,
            large_file_threshold=settings.LARGE_FILE_THRESHOLD_BYTES,
            lock_path=settings.SYNC_LOCK_PATH,
            lock_timeout=settings.SYNC_LOCK_TIMEOUT_SECONDS,
            url_default_ttl=settings.URL_DEFAULT_TTL,
            url_max_ttl=settings.URL_MAX_TTL,
            max_upload_bytes=settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024,
            blocked_mime_types=frozenset(settings.BLOCKED_MIME_TYPES),
        )

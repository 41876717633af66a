"""
Backend registry.

Resolves a backend type plus optional configuration name to a live adapter,
caches adapters for the life of the registry, and applies placement rules
to choose a backend for new files.
"""
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from filestorage.database import SessionLocal
from filestorage.logging_config import setup_logging
from filestorage.models.backend_config import BackendConfig
from filestorage.models.file_record import BackendType, FileRecord
from filestorage.services.policy import StoragePolicy
from filestorage.services.rules import FileInfo, match_placement_rule, resolve_backend_type
from filestorage.storage.azure import AzureStorageBackend
from filestorage.storage.base import StorageBackend
from filestorage.storage.exceptions import ConfigNotFoundError, InvalidConfigError, StorageError
from filestorage.storage.gcs import GCSStorageBackend
from filestorage.storage.local import LocalStorageBackend
from filestorage.storage.s3 import S3StorageBackend, spaces_backend

logger = setup_logging()

AdapterFactory = Callable[[dict[str, Any]], StorageBackend]

DEFAULT_ADAPTER_FACTORIES: dict[str, AdapterFactory] = {
    BackendType.S3.value: S3StorageBackend,
    BackendType.SPACES.value: spaces_backend,
    BackendType.GCS.value: GCSStorageBackend,
    BackendType.AZURE.value: AzureStorageBackend,
}

CacheKey = tuple[str, str | None]


class BackendRegistry:
    """
    Factory and cache for storage adapters.

    Adapters are immutable once built. Any change to a BackendConfig must be
    followed by ``invalidate()`` (config_admin does this), otherwise the
    cached adapter keeps the old credentials.
    """

    def __init__(
        self,
        policy: StoragePolicy,
        session_factory: Callable[[], Session] = SessionLocal,
        adapter_factories: dict[str, AdapterFactory] | None = None,
    ):
        self.policy = policy
        self.session_factory = session_factory
        self.adapter_factories = dict(adapter_factories or DEFAULT_ADAPTER_FACTORIES)
        self._cache: dict[CacheKey, StorageBackend] = {}

    def available_types(self) -> list[str]:
        return [t.value for t in BackendType]

    def register(
        self,
        storage_type: str,
        backend: StorageBackend,
        config_name: str | None = None,
    ) -> None:
        """Place a ready-made adapter in the cache."""
        self._cache[(str(storage_type), config_name)] = backend

    def get_backend(
        self,
        storage_type: str,
        config_name: str | None = None,
        db: Session | None = None,
    ) -> StorageBackend:
        """
        Get the adapter for a backend type and optional configuration name.

        Args:
            storage_type: Backend type token
            config_name: Named configuration; the default (or first) active
                configuration of the type when omitted
            db: Optional database session

        Returns:
            Cached or newly built adapter

        Raises:
            ConfigNotFoundError: If no active configuration matches
            InvalidConfigError: If the type is unknown or the config is invalid
        """
        storage_type = str(storage_type)
        key = (storage_type, config_name)
        if key in self._cache:
            return self._cache[key]

        if storage_type == BackendType.LOCAL:
            backend = LocalStorageBackend(self.policy.local_path, self.policy.local_url)
        else:
            factory = self.adapter_factories.get(storage_type)
            if factory is None:
                raise InvalidConfigError(f"Unsupported storage type: {storage_type}")
            config = self._load_config(storage_type, config_name, db)
            backend = factory(dict(config.config_data or {}))
            logger.info(f"Initialized {storage_type} backend (config: {config.config_name})")

        self._cache[key] = backend
        return backend

    def get_default_backend(self, db: Session | None = None) -> StorageBackend:
        storage_type, config_name = self.default_target()
        return self.get_backend(storage_type, config_name, db)

    def default_target(self) -> tuple[str, str | None]:
        """Configured default (type, config name), falling back to local."""
        storage_type = self.policy.default_backend_type or BackendType.LOCAL
        if storage_type == BackendType.LOCAL:
            return BackendType.LOCAL.value, None
        return storage_type, self.policy.default_backend_config

    def get_backend_for_record(
        self,
        record: FileRecord | int,
        db: Session | None = None,
    ) -> StorageBackend:
        """
        Get the adapter currently holding a file's bytes.

        Raises:
            StorageError: If the file record does not exist
        """
        if not isinstance(record, FileRecord):
            record = self._load_record(record, db)
        return self.get_backend(resolve_backend_type(record), record.config_name, db)

    def resolve_new_file_target(self, info: FileInfo) -> tuple[str, str | None]:
        """(type, config name) chosen by placement rules, else the default."""
        rule = match_placement_rule(self.policy.placement_rules, info)
        if rule is None:
            return self.default_target()
        return rule.backend, rule.config_name

    def get_backend_for_new_file(self, info: FileInfo, db: Session | None = None) -> StorageBackend:
        storage_type, config_name = self.resolve_new_file_target(info)
        return self.get_backend(storage_type, config_name, db)

    def invalidate(self, storage_type: str | None = None, config_name: str | None = None) -> int:
        """
        Drop cached adapters.

        Args:
            storage_type: Only drop adapters of this type (all when omitted)
            config_name: Only drop adapters with this config name. The
                unnamed entry for the type is dropped too, since it may
                resolve to the same configuration.

        Returns:
            Number of adapters dropped
        """
        doomed = [
            key for key in self._cache
            if (storage_type is None or key[0] == str(storage_type))
            and (config_name is None or key[1] in (config_name, None))
        ]
        for key in doomed:
            del self._cache[key]

        if doomed:
            logger.info(f"Invalidated {len(doomed)} cached storage adapter(s)")
        return len(doomed)

    def clear_cache(self) -> None:
        self.invalidate()

    def _load_config(
        self,
        storage_type: str,
        config_name: str | None,
        db: Session | None,
    ) -> BackendConfig:
        close_db = False
        if db is None:
            db = self.session_factory()
            close_db = True

        try:
            stmt = select(BackendConfig).where(
                BackendConfig.storage_type == storage_type,
                BackendConfig.is_active.is_(True),
            )
            if config_name:
                stmt = stmt.where(BackendConfig.config_name == config_name)
            stmt = stmt.order_by(BackendConfig.is_default.desc(), BackendConfig.id)

            config = db.scalars(stmt).first()
            if config is None:
                raise ConfigNotFoundError(storage_type, config_name)
            return config
        finally:
            if close_db:
                db.close()

    def _load_record(self, file_id: int, db: Session | None) -> FileRecord:
        close_db = False
        if db is None:
            db = self.session_factory()
            close_db = True

        try:
            record = db.get(FileRecord, file_id)
            if record is None:
                raise StorageError(f"File record not found: {file_id}")
            return record
        finally:
            if close_db:
                db.close()

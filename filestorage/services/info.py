"""
Storage introspection.

Read-only view of configured backends, optionally with connectivity
results and usage statistics.
"""
from sqlalchemy import select
from sqlalchemy.orm import Session

from filestorage.logging_config import setup_logging
from filestorage.models.backend_config import BackendConfig
from filestorage.models.file_record import BackendType
from filestorage.services.registry import BackendRegistry
from filestorage.services.statistics import collect_statistics
from filestorage.storage.exceptions import StorageError

logger = setup_logging()


async def _connection_status(registry: BackendRegistry, db: Session, storage_type, config_name) -> dict:
    try:
        backend = registry.get_backend(storage_type, config_name, db)
        connected = await backend.test_connection()
    except StorageError as e:
        return {"connection_status": "error", "connection_error": str(e)}
    return {
        "connection_status": "success" if connected else "failed",
        "config": backend.get_config(),
    }


async def get_storage_info(
    db: Session,
    registry: BackendRegistry,
    entity_prefix: str = "",
    storage_type: str | None = None,
    include_stats: bool = True,
    test_connection: bool = False,
) -> dict:
    """
    Describe configured backends.

    Args:
        db: Database session
        registry: Backend registry
        entity_prefix: Host table prefix stripped from entity names in stats
        storage_type: Only describe this backend type
        include_stats: Add file counts per backend and a summary
        test_connection: Probe every listed backend

    Returns:
        Dict with ``backends`` (list) and, with stats, ``summary``
    """
    stmt = select(BackendConfig).order_by(BackendConfig.storage_type, BackendConfig.id)
    if storage_type:
        stmt = stmt.where(BackendConfig.storage_type == storage_type)
    configs = list(db.scalars(stmt))

    backends = []
    for config in configs:
        entry = {
            "id": config.id,
            "type": config.storage_type,
            "name": config.config_name,
            "is_active": config.is_active,
            "is_default": config.is_default,
        }
        if test_connection and config.is_active:
            entry.update(
                await _connection_status(registry, db, config.storage_type, config.config_name)
            )
        backends.append(entry)

    if not storage_type or storage_type == BackendType.LOCAL:
        default_type, _ = registry.default_target()
        entry = {
            "id": None,
            "type": BackendType.LOCAL.value,
            "name": "Local Filesystem",
            "is_active": True,
            "is_default": default_type == BackendType.LOCAL,
        }
        if test_connection:
            entry.update(await _connection_status(registry, db, BackendType.LOCAL, None))
        backends.append(entry)

    info = {"backends": backends}
    if include_stats:
        stats = collect_statistics(db, entity_prefix)
        total = stats["total_files"]
        for entry in backends:
            count = stats["by_storage"].get(entry["type"], 0)
            entry["file_count"] = count
            entry["percentage"] = round(count / total * 100, 1) if total else 0
        info["summary"] = stats

    return info

"""
Storage statistics.

Counts of files per backend and per owning entity, shared by the file
service, the migration report and the storage info endpoint.
"""
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from filestorage.models.entity_file import EntityFile
from filestorage.models.file_record import BackendType, FileRecord
from filestorage.utils.paths import normalize_entity_type


def collect_statistics(db: Session, entity_prefix: str = "") -> dict:
    """
    Collect storage distribution statistics.

    Returns:
        Dict with total_files, total_size, by_storage (type -> count) and
        by_entity (normalized entity type -> distinct file count)
    """
    by_storage: dict[str, int] = {}
    rows = db.execute(
        select(FileRecord.backend_type, func.count(FileRecord.id)).group_by(FileRecord.backend_type)
    )
    for backend_type, count in rows:
        key = str(backend_type or BackendType.LOCAL)
        by_storage[key] = by_storage.get(key, 0) + count

    total_size = db.scalar(select(func.coalesce(func.sum(FileRecord.size), 0))) or 0

    by_entity: dict[str, int] = {}
    rows = db.execute(
        select(EntityFile.entity_table, func.count(func.distinct(EntityFile.file_id)))
        .group_by(EntityFile.entity_table)
    )
    for entity_table, count in rows:
        key = normalize_entity_type(entity_table, entity_prefix)
        by_entity[key] = by_entity.get(key, 0) + count

    return {
        "total_files": sum(by_storage.values()),
        "total_size": int(total_size),
        "by_storage": by_storage,
        "by_entity": by_entity,
    }


def count_files_on(
    db: Session,
    storage_type: str,
    config_name: str | None = None,
    include_unnamed: bool = False,
) -> int:
    """
    Number of files currently held by a backend type.

    When config_name is given, only files whose metadata names that
    configuration are counted, plus files naming no configuration when
    include_unnamed is set (they resolve to the default one).
    """
    if config_name is None:
        return db.scalar(
            select(func.count(FileRecord.id)).where(FileRecord.backend_type == storage_type)
        ) or 0

    records = db.scalars(
        select(FileRecord.backend_metadata).where(FileRecord.backend_type == storage_type)
    )
    names = {config_name, None} if include_unnamed else {config_name}
    return sum(1 for metadata in records if (metadata or {}).get("config_name") in names)

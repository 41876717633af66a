"""
Storage health check.

Summarizes whether the storage layer is usable: active configurations,
files stuck in failed sync, and connectivity of every active backend.
"""
from dataclasses import asdict, dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from filestorage.logging_config import setup_logging
from filestorage.models.backend_config import BackendConfig
from filestorage.models.file_record import BackendType, FileRecord, SyncStatus
from filestorage.services.registry import BackendRegistry
from filestorage.storage.exceptions import StorageError

logger = setup_logging()

STATUS_OK = "ok"
STATUS_WARNING = "warning"
STATUS_ERROR = "error"


@dataclass
class HealthReport:
    status: str = STATUS_OK
    messages: list[str] = field(default_factory=list)
    backends: dict[str, bool] = field(default_factory=dict)

    def warn(self, message: str) -> None:
        if self.status == STATUS_OK:
            self.status = STATUS_WARNING
        self.messages.append(message)

    def fail(self, message: str) -> None:
        self.status = STATUS_ERROR
        self.messages.append(message)

    def to_dict(self) -> dict:
        return asdict(self)


async def check_health(db: Session, registry: BackendRegistry) -> HealthReport:
    """
    Check the storage layer.

    Missing configurations and failed syncs are warnings; a backend that
    cannot be reached is an error.
    """
    report = HealthReport()

    local = registry.get_backend(BackendType.LOCAL, db=db)
    report.backends[BackendType.LOCAL.value] = await local.test_connection()
    if not report.backends[BackendType.LOCAL.value]:
        report.fail("Connection failed: local storage")

    configs = list(
        db.scalars(
            select(BackendConfig)
            .where(BackendConfig.is_active.is_(True))
            .order_by(BackendConfig.storage_type, BackendConfig.id)
        )
    )
    if not configs:
        report.warn("No active storage configuration found")

    failed = db.scalar(
        select(func.count(FileRecord.id)).where(FileRecord.sync_status == SyncStatus.FAILED)
    ) or 0
    if failed:
        report.warn(f"{failed} files have failed sync status")

    for config in configs:
        label = f"{config.storage_type}:{config.config_name}"
        try:
            backend = registry.get_backend(config.storage_type, config.config_name, db)
            connected = await backend.test_connection()
        except StorageError as e:
            logger.warning(f"Health check could not build {label}: {e}")
            connected = False

        report.backends[label] = connected
        if not connected:
            report.fail(f"Connection failed: {label}")

    return report

"""
Result types returned by the sync and migration engines.

Every bulk operation reports aggregate counters plus a per-file error map,
so callers can see which files failed without reading logs.
"""
from dataclasses import asdict, dataclass, field


@dataclass
class TransferOutcome:
    """Result of moving one file between backends."""

    file_id: int
    status: str  # synced | skipped | queued
    source_backend: str
    target_backend: str
    target_path: str | None = None
    size: int = 0
    duration_ms: int = 0
    cleanup_warnings: list[str] = field(default_factory=list)


@dataclass
class BatchResult:
    """Aggregate result of a sync batch, migration or rollback run."""

    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    queued: int = 0
    total_size: int = 0
    duration_ms: int = 0
    errors: dict[int, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def partially_successful(self) -> bool:
        return self.failed > 0 and self.success > 0

    @property
    def duration_seconds(self) -> int:
        return self.duration_ms // 1000

    def add_failure(self, file_id: int, error: Exception | str) -> None:
        self.failed += 1
        self.errors[file_id] = str(error)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["duration"] = self.duration_seconds
        data["partially_successful"] = self.partially_successful
        return data


@dataclass
class VerifyResult:
    checked: int = 0
    valid: int = 0
    invalid: int = 0
    errors: dict[int, str] = field(default_factory=dict)

    def add_invalid(self, file_id: int, error: Exception | str) -> None:
        self.invalid += 1
        self.errors[file_id] = str(error)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MigrationPlan:
    """Read-only estimate for a migration."""

    file_count: int
    total_size: int
    total_size_formatted: str
    estimated_time: int
    estimated_cost: float
    avg_file_size: int
    sample_size: int
    criteria: dict

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SnapshotRestoreResult:
    restored: int = 0
    failed: int = 0
    errors: dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

"""
Storage API schemas.

This module defines Pydantic schemas for the storage administration
endpoints: migration, sync, storage info, health, progress, backend
configurations and snapshots.
"""
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class MigrateRequest(BaseModel):
    """Migration request: criteria plus execution options."""

    target_backend: str = Field(..., min_length=1)
    """Backend files should move to."""

    target_config: str | None = None
    source_backend: str | None = None
    file_types: list[int] | None = None
    entity_types: list[str] | None = None
    min_age_days: int | None = Field(None, ge=0)
    min_size: int | None = Field(None, ge=0)
    max_size: int | None = Field(None, ge=0)

    batch_size: int | None = Field(None, ge=1, le=1000)
    delete_source: bool = False
    verify: bool = False
    dry_run: bool = False
    """When true, return a plan instead of moving files."""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "target_backend": "s3",
                    "source_backend": "local",
                    "min_age_days": 30,
                    "batch_size": 50,
                    "verify": True,
                    "dry_run": True,
                }
            ]
        }
    }


class MigrationPlanData(BaseModel):
    file_count: int
    total_size: int
    total_size_formatted: str
    estimated_time: int
    """Estimated transfer time in seconds."""
    estimated_cost: float
    """Advisory monthly storage cost in USD."""
    avg_file_size: int
    sample_size: int
    criteria: dict[str, Any]


class BatchResultData(BaseModel):
    processed: int
    success: int
    failed: int
    skipped: int
    queued: int = 0
    total_size: int = 0
    duration: int
    """Duration in seconds."""
    duration_ms: int
    partially_successful: bool
    errors: dict[int, str]
    """Error message per file id."""
    warnings: list[str]


class SyncRequest(BaseModel):
    mode: Literal["pending", "failed", "verify", "all"] = "pending"
    target_backend: str | None = None
    target_config: str | None = None
    batch_size: int | None = Field(None, ge=1, le=1000)
    file_types: list[int] | None = None
    days_old: int | None = Field(None, ge=0)
    entity_types: list[str] | None = None


class HealthData(BaseModel):
    status: Literal["ok", "warning", "error"]
    messages: list[str]
    backends: dict[str, bool]


class ProgressData(BaseModel):
    total: int
    completed: int
    remaining: int
    percentage: float
    target_storage: str
    avg_time_per_file: float
    estimated_seconds: int
    estimated_hours: float
    estimated_completion: str


class BackendConfigCreateRequest(BaseModel):
    storage_type: Literal["s3", "spaces", "gcs", "azure"]
    config_name: str = Field(..., min_length=1, max_length=255)
    config_data: dict[str, Any]
    is_active: bool = True
    is_default: bool = False
    file_type_rules: dict[str, Any] | list[Any] | None = None


class BackendConfigData(BaseModel):
    """Backend configuration with credentials masked."""

    id: int
    storage_type: str
    config_name: str
    config_data: dict[str, Any]
    is_active: bool
    is_default: bool
    created_at: datetime


class SnapshotCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class SnapshotData(BaseModel):
    name: str
    file_count: int
    created_at: datetime


class SnapshotRestoreData(BaseModel):
    restored: int
    failed: int
    errors: dict[int, str]

"""
Storage API endpoints.

This module provides administration endpoints for the storage layer:
migration (plan or execute), sync batches, storage info, health,
migration progress, backend configurations and pointer snapshots.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from filestorage.database import get_db
from filestorage.dependencies.storage import (
    get_migration_engine,
    get_policy,
    get_registry,
    get_sync_engine,
)
from filestorage.logging_config import setup_logging
from filestorage.schemas.common import ERROR_RESPONSES, APIResponse
from filestorage.schemas.storage import (
    BackendConfigCreateRequest,
    BackendConfigData,
    BatchResultData,
    HealthData,
    MigrateRequest,
    MigrationPlanData,
    ProgressData,
    SnapshotCreateRequest,
    SnapshotData,
    SnapshotRestoreData,
    SyncRequest,
)
from filestorage.services import config_admin
from filestorage.services.health import check_health
from filestorage.services.info import get_storage_info
from filestorage.services.migration import (
    MigrationCriteria,
    MigrationEngine,
    SnapshotExistsError,
    SnapshotNotFoundError,
)
from filestorage.services.policy import StoragePolicy
from filestorage.services.registry import BackendRegistry
from filestorage.services.sync import SyncEngine, SyncFilters
from filestorage.storage.base import sanitize_config
from filestorage.storage.exceptions import StorageError, SyncAlreadyRunningError

router = APIRouter(prefix="/storage", tags=["storage"], responses=ERROR_RESPONSES)

# Setup logger for error tracking
logger = setup_logging()


def _error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"success": False, "error": error, "message": message},
    )


@router.post(
    "/migrate",
    response_model=APIResponse[MigrationPlanData | BatchResultData],
    status_code=status.HTTP_200_OK,
)
async def migrate_endpoint(
    request: MigrateRequest,
    engine: MigrationEngine = Depends(get_migration_engine),
):
    """
    Plan or execute a migration.

    With ``dry_run`` the response is a read-only plan (file count, size,
    time and cost estimates). Otherwise one batch is migrated and the
    batch result returned; per-file failures are reported in ``errors``
    and never fail the request.

    Raises:
        HTTPException 502: If a backend cannot be reached while planning
    """
    criteria = MigrationCriteria(
        target_backend=request.target_backend,
        target_config=request.target_config,
        source_backend=request.source_backend,
        file_types=request.file_types,
        entity_types=request.entity_types,
        min_age_days=request.min_age_days,
        min_size=request.min_size,
        max_size=request.max_size,
    )

    if request.dry_run:
        try:
            plan = await engine.plan(criteria)
        except StorageError as e:
            logger.warning(f"Migration planning failed: {e}")
            raise _error(status.HTTP_502_BAD_GATEWAY, "Bad Gateway", str(e))
        return APIResponse(data=MigrationPlanData(**plan.to_dict()))

    result = await engine.execute(
        criteria,
        batch_size=request.batch_size,
        delete_source=request.delete_source,
        verify=request.verify,
    )
    return APIResponse(data=BatchResultData(**result.to_dict()))


@router.get("/info", response_model=APIResponse[dict], status_code=status.HTTP_200_OK)
async def storage_info_endpoint(
    storage_type: str | None = Query(None, description="Only describe this backend type"),
    include_stats: bool = Query(True),
    test_connection: bool = Query(False),
    db: Session = Depends(get_db),
    registry: BackendRegistry = Depends(get_registry),
    policy: StoragePolicy = Depends(get_policy),
):
    """Describe configured backends, with optional stats and connectivity."""
    info = await get_storage_info(
        db,
        registry,
        entity_prefix=policy.entity_prefix,
        storage_type=storage_type,
        include_stats=include_stats,
        test_connection=test_connection,
    )
    return APIResponse(data=info)


@router.post("/sync", response_model=APIResponse[BatchResultData], status_code=status.HTTP_200_OK)
async def sync_endpoint(
    request: SyncRequest,
    engine: SyncEngine = Depends(get_sync_engine),
):
    """
    Run one sync batch.

    Raises:
        HTTPException 409: If another sync batch is running
    """
    filters = SyncFilters(
        file_types=request.file_types,
        days_old=request.days_old,
        entity_types=request.entity_types,
    )
    try:
        result = await engine.run_batch(
            request.mode,
            target_backend=request.target_backend,
            target_config=request.target_config,
            batch_size=request.batch_size,
            filters=filters,
        )
    except SyncAlreadyRunningError as e:
        logger.info(f"Sync request rejected: {e}")
        raise _error(status.HTTP_409_CONFLICT, "Conflict", "A sync batch is already running")

    return APIResponse(data=BatchResultData(**result.to_dict()))


@router.get("/health", response_model=APIResponse[HealthData], status_code=status.HTTP_200_OK)
async def health_endpoint(
    db: Session = Depends(get_db),
    registry: BackendRegistry = Depends(get_registry),
):
    """Report ok/warning/error with the reasons."""
    report = await check_health(db, registry)
    return APIResponse(data=HealthData(**report.to_dict()))


@router.get(
    "/progress/{target_backend}",
    response_model=APIResponse[ProgressData],
    status_code=status.HTTP_200_OK,
)
def progress_endpoint(
    target_backend: str,
    engine: MigrationEngine = Depends(get_migration_engine),
):
    """Migration progress toward a backend, with an ETA."""
    progress = engine.get_progress(target_backend)
    eta = engine.estimate_time_remaining(target_backend)
    return APIResponse(
        data=ProgressData(
            **progress,
            avg_time_per_file=eta["avg_time_per_file"],
            estimated_seconds=eta["estimated_seconds"],
            estimated_hours=eta["estimated_hours"],
            estimated_completion=eta["estimated_completion"],
        )
    )


def _config_data(config) -> BackendConfigData:
    return BackendConfigData(
        id=config.id,
        storage_type=config.storage_type,
        config_name=config.config_name,
        config_data=sanitize_config(config.config_data or {}),
        is_active=config.is_active,
        is_default=config.is_default,
        created_at=config.created_at,
    )


@router.post(
    "/configs",
    response_model=APIResponse[BackendConfigData],
    status_code=status.HTTP_201_CREATED,
)
def create_config_endpoint(
    request: BackendConfigCreateRequest,
    db: Session = Depends(get_db),
    registry: BackendRegistry = Depends(get_registry),
):
    """
    Create a backend configuration. Credentials are masked in the response.

    Raises:
        HTTPException 400: If required fields are missing or the name is taken
    """
    try:
        config = config_admin.create_config(
            db,
            registry,
            storage_type=request.storage_type,
            config_name=request.config_name,
            config_data=request.config_data,
            is_active=request.is_active,
            is_default=request.is_default,
            file_type_rules=request.file_type_rules,
        )
    except ValueError as e:
        raise _error(status.HTTP_400_BAD_REQUEST, "Bad Request", str(e))

    return APIResponse(data=_config_data(config))


@router.delete("/configs/{config_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_config_endpoint(
    config_id: int,
    db: Session = Depends(get_db),
    registry: BackendRegistry = Depends(get_registry),
):
    """
    Delete a backend configuration.

    Raises:
        HTTPException 404: If the configuration does not exist
        HTTPException 409: If files still use it
    """
    try:
        config_admin.delete_config(db, registry, config_id)
    except config_admin.ConfigInUseError as e:
        raise _error(status.HTTP_409_CONFLICT, "Conflict", str(e))
    except ValueError as e:
        raise _error(status.HTTP_404_NOT_FOUND, "Not Found", str(e))


@router.get(
    "/snapshots",
    response_model=APIResponse[list[SnapshotData]],
    status_code=status.HTTP_200_OK,
)
def list_snapshots_endpoint(engine: MigrationEngine = Depends(get_migration_engine)):
    snapshots = engine.list_snapshots()
    return APIResponse(
        data=[
            SnapshotData(name=s.name, file_count=s.file_count, created_at=s.created_at)
            for s in snapshots
        ]
    )


@router.post(
    "/snapshots",
    response_model=APIResponse[SnapshotData],
    status_code=status.HTTP_201_CREATED,
)
def create_snapshot_endpoint(
    request: SnapshotCreateRequest,
    engine: MigrationEngine = Depends(get_migration_engine),
):
    """Capture every file's locator under a unique name."""
    try:
        snapshot = engine.create_snapshot(request.name)
    except SnapshotExistsError as e:
        raise _error(status.HTTP_409_CONFLICT, "Conflict", str(e))

    return APIResponse(
        data=SnapshotData(
            name=snapshot.name, file_count=snapshot.file_count, created_at=snapshot.created_at
        )
    )


@router.post(
    "/snapshots/{name}/restore",
    response_model=APIResponse[SnapshotRestoreData],
    status_code=status.HTTP_200_OK,
)
def restore_snapshot_endpoint(
    name: str,
    engine: MigrationEngine = Depends(get_migration_engine),
):
    """Write a snapshot's locators back. Bytes are not moved."""
    try:
        result = engine.restore_snapshot(name)
    except SnapshotNotFoundError as e:
        raise _error(status.HTTP_404_NOT_FOUND, "Not Found", str(e))

    return APIResponse(data=SnapshotRestoreData(**result.to_dict()))


@router.delete("/snapshots/{name}", status_code=status.HTTP_204_NO_CONTENT)
def delete_snapshot_endpoint(
    name: str,
    engine: MigrationEngine = Depends(get_migration_engine),
):
    try:
        engine.delete_snapshot(name)
    except SnapshotNotFoundError as e:
        raise _error(status.HTTP_404_NOT_FOUND, "Not Found", str(e))

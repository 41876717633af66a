"""
Tests for the storage health check and storage info.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from filestorage.models.backend_config import BackendConfig
from filestorage.models.file_record import SyncStatus
from filestorage.services.health import check_health
from filestorage.services.info import get_storage_info
from filestorage.services.registry import BackendRegistry
from tests.constants import S3_CONFIG


def fake_backend(connected: bool) -> MagicMock:
    backend = MagicMock()
    backend.test_connection = AsyncMock(return_value=connected)
    backend.get_config.return_value = {"type": "s3", "bucket": "test-bucket"}
    return backend


def add_config(db, name="main"):
    db.add(BackendConfig(storage_type="s3", config_name=name, config_data=S3_CONFIG))
    db.commit()


@pytest.mark.asyncio
async def test_no_configuration_is_a_warning(db, registry):
    report = await check_health(db, registry)

    assert report.status == "warning"
    assert report.messages == ["No active storage configuration found"]
    assert report.backends == {"local": True}


@pytest.mark.asyncio
async def test_healthy(db, policy):
    add_config(db)
    registry = BackendRegistry(policy)
    registry.register("s3", fake_backend(True), "main")

    report = await check_health(db, registry)

    assert report.status == "ok"
    assert report.backends == {"local": True, "s3:main": True}


@pytest.mark.asyncio
async def test_failed_files_are_a_warning(db, policy, make_file):
    add_config(db)
    registry = BackendRegistry(policy)
    registry.register("s3", fake_backend(True), "main")
    await make_file("a.pdf", sync_status=SyncStatus.FAILED)
    await make_file("b.pdf", sync_status=SyncStatus.FAILED)

    report = await check_health(db, registry)

    assert report.status == "warning"
    assert report.messages == ["2 files have failed sync status"]


@pytest.mark.asyncio
async def test_unreachable_backend_is_an_error(db, policy, make_file):
    add_config(db)
    registry = BackendRegistry(policy)
    registry.register("s3", fake_backend(False), "main")
    await make_file("a.pdf", sync_status=SyncStatus.FAILED)

    report = await check_health(db, registry)

    assert report.status == "error"
    assert "Connection failed: s3:main" in report.messages
    assert report.to_dict()["backends"]["s3:main"] is False


@pytest.mark.asyncio
async def test_storage_info(db, policy, make_file):
    add_config(db)
    registry = BackendRegistry(policy)
    registry.register("s3", fake_backend(True), "main")
    await make_file("a.pdf")
    await make_file("b.pdf", backend_type="s3", write=False)

    info = await get_storage_info(db, registry, entity_prefix="civicrm_", test_connection=True)

    s3_entry, local_entry = info["backends"]
    assert s3_entry["type"] == "s3"
    assert s3_entry["name"] == "main"
    assert s3_entry["connection_status"] == "success"
    assert s3_entry["file_count"] == 1
    assert s3_entry["percentage"] == 50.0
    assert local_entry["type"] == "local"
    assert local_entry["is_default"] is True
    assert info["summary"]["total_files"] == 2


@pytest.mark.asyncio
async def test_storage_info_reports_missing_config(db, policy):
    db.add(BackendConfig(storage_type="gcs", config_name="broken", config_data={"bucket": "b"}))
    db.commit()

    info = await get_storage_info(
        db, BackendRegistry(policy), storage_type="gcs", include_stats=False, test_connection=True
    )

    assert len(info["backends"]) == 1
    assert info["backends"][0]["connection_status"] == "error"
    assert "summary" not in info

"""
Tests for the append-only audit log.
"""
import pytest

from filestorage.models.sync_log import LogStatus, SyncOperation
from filestorage.services.audit import AuditLog


@pytest.mark.asyncio
async def test_record_and_history(db, make_file):
    record = await make_file()
    audit = AuditLog(db, actor="tests")

    audit.record(record.id, SyncOperation.SYNC, LogStatus.FAILED, "local", "s3", error_message="boom")
    audit.record(record.id, SyncOperation.SYNC, LogStatus.SUCCESS, "local", "s3", duration_ms=100)

    history = audit.history(file_id=record.id)
    assert [entry.status for entry in history] == [LogStatus.SUCCESS, LogStatus.FAILED]
    assert all(entry.actor == "tests" for entry in history)
    assert audit.latest_failure(record.id).error_message == "boom"
    assert audit.failed_count() == 1


@pytest.mark.asyncio
async def test_history_filters(db, make_file):
    record = await make_file()
    audit = AuditLog(db)
    audit.record(record.id, SyncOperation.UPLOAD, LogStatus.SUCCESS, target_backend="local")
    audit.record(record.id, SyncOperation.MIGRATE, LogStatus.SUCCESS, "local", "s3")

    migrations = audit.history(operation=SyncOperation.MIGRATE)

    assert len(migrations) == 1
    assert migrations[0].target_backend == "s3"
    assert audit.history(limit=1)[0].operation == SyncOperation.MIGRATE


@pytest.mark.asyncio
async def test_average_duration(db, make_file):
    record = await make_file()
    audit = AuditLog(db)

    assert audit.average_duration_ms("s3") is None

    audit.record(record.id, SyncOperation.MIGRATE, LogStatus.SUCCESS, "local", "s3", duration_ms=1000)
    audit.record(record.id, SyncOperation.MIGRATE, LogStatus.SUCCESS, "local", "s3", duration_ms=3000)
    # Failures and other targets are ignored
    audit.record(record.id, SyncOperation.MIGRATE, LogStatus.FAILED, "local", "s3", duration_ms=9000)
    audit.record(record.id, SyncOperation.MIGRATE, LogStatus.SUCCESS, "local", "gcs", duration_ms=9000)

    assert audit.average_duration_ms("s3") == 2000.0

"""
Tests for the migration engine.
"""
import pytest
from sqlalchemy import select

from filestorage.models.file_record import FileRecord, SyncStatus
from filestorage.models.sync_log import LogStatus, SyncLogEntry, SyncOperation
from filestorage.services.migration import (
    FALLBACK_SECONDS_PER_FILE,
    MigrationCriteria,
    MigrationEngine,
    SnapshotExistsError,
    SnapshotNotFoundError,
    estimate_cost,
)


@pytest.fixture
def engine(db, registry, policy):
    return MigrationEngine(db, registry, policy, actor="tests")


@pytest.fixture
def to_s3():
    return MigrationCriteria(target_backend="s3")


def test_criteria_requires_target():
    with pytest.raises(ValueError) as exc_info:
        MigrationCriteria(target_backend="")
    assert str(exc_info.value) == "Target storage is required"


def test_estimate_cost():
    one_gb = 1024 ** 3
    assert estimate_cost("s3", 100 * one_gb) == 2.3
    assert estimate_cost("unknown", 100 * one_gb) == 2.0
    assert estimate_cost("s3", 0) == 0


@pytest.mark.asyncio
async def test_plan_excludes_files_already_on_target(engine, to_s3, make_file):
    await make_file("a.pdf", content=b"x" * 100)
    await make_file("b.pdf", content=b"x" * 300)
    await make_file("c.pdf", backend_type="s3", write=False)

    plan = await engine.plan(to_s3)

    assert plan.file_count == 2
    assert plan.sample_size == 2
    assert plan.avg_file_size == 200
    assert plan.total_size == 400
    assert plan.total_size_formatted == "400 B"
    assert plan.criteria == {"target_backend": "s3"}


@pytest.mark.asyncio
async def test_plan_skips_missing_objects_in_sample(engine, to_s3, make_file):
    await make_file("a.pdf", content=b"x" * 100)
    await make_file("gone.pdf", content=b"x" * 5000, write=False)

    plan = await engine.plan(to_s3)

    assert plan.file_count == 2
    assert plan.avg_file_size == 100


@pytest.mark.asyncio
async def test_plan_with_filters(engine, make_file):
    await make_file("old.pdf", days_old=90, content=b"x" * 10)
    await make_file("new.pdf", days_old=1, content=b"x" * 10)
    await make_file("huge.pdf", days_old=90, content=b"x" * 1000)

    criteria = MigrationCriteria(target_backend="s3", source_backend="local", min_age_days=30, max_size=100)
    plan = await engine.plan(criteria)

    assert plan.file_count == 1
    assert plan.criteria["min_age_days"] == 30


@pytest.mark.asyncio
async def test_dry_run_touches_nothing(db, engine, to_s3, make_file):
    records = [await make_file(f"{name}.pdf") for name in ("a", "b")]

    result = await engine.execute(to_s3, dry_run=True)

    assert result.processed == 2
    assert result.skipped == result.processed
    assert result.success == 0
    for record in records:
        db.refresh(record)
        assert record.backend_type == "local"
    assert db.scalars(select(SyncLogEntry)).first() is None


@pytest.mark.asyncio
async def test_execute_is_idempotent(db, engine, to_s3, make_file):
    record = await make_file("a.pdf")

    first = await engine.execute(to_s3)
    second = await engine.execute(to_s3)

    assert (first.processed, first.success) == (1, 1)
    assert second.processed == 0
    db.refresh(record)
    assert record.backend_type == "s3"
    assert record.sync_status == SyncStatus.SYNCED

    history = engine.history()
    assert len(history) == 1
    assert history[0].operation == SyncOperation.MIGRATE
    assert history[0].status == LogStatus.SUCCESS


@pytest.mark.asyncio
async def test_execute_respects_batch_size(engine, to_s3, make_file):
    for name in ("a", "b", "c"):
        await make_file(f"{name}.pdf")

    result = await engine.execute(to_s3, batch_size=2)

    assert result.processed == 2
    assert engine.count_candidates(to_s3) == 1


@pytest.mark.asyncio
async def test_execute_reports_failures_per_file(db, engine, to_s3, make_file):
    missing = await make_file("gone.pdf", write=False)
    await make_file("ok.pdf")

    result = await engine.execute(to_s3)

    assert (result.success, result.failed) == (1, 1)
    assert "gone.pdf" in result.errors[missing.id]
    assert engine.failed_files()[0]["file_id"] == missing.id
    assert "gone.pdf" in engine.failed_files()[0]["error"]


@pytest.mark.asyncio
async def test_execute_with_delete_source(engine, to_s3, make_file, local_backend):
    await make_file("a.pdf")

    await engine.execute(to_s3, delete_source=True, verify=True)

    assert not await local_backend.exists("a.pdf")


@pytest.mark.asyncio
async def test_verify_reports_missing_and_mismatched(db, engine, to_s3, make_file, remote_backend):
    ok = await make_file("ok.pdf")
    lost = await make_file("lost.pdf")
    wrong = await make_file("wrong.pdf")
    await engine.execute(to_s3)

    db.refresh(lost)
    await remote_backend.delete(lost.backend_path)
    db.refresh(wrong)
    real_size = wrong.size
    wrong.size = real_size + 1
    db.commit()

    result = await engine.verify("s3")

    assert (result.checked, result.valid, result.invalid) == (3, 1, 2)
    assert result.errors[lost.id] == "File does not exist in storage"
    assert result.errors[wrong.id] == f"Size mismatch (expected: {real_size + 1}, actual: {real_size})"
    assert ok.id not in result.errors


@pytest.mark.asyncio
async def test_rollback_returns_files_to_original_backend(db, engine, to_s3, make_file, local_backend):
    record = await make_file("a.pdf")
    await engine.execute(to_s3)

    result = await engine.rollback("s3")

    assert result.success == 1
    db.refresh(record)
    assert record.backend_type == "local"
    assert await local_backend.read(record.backend_path) == b"%PDF-1.4 test content"


@pytest.mark.asyncio
async def test_rollback_without_breadcrumb_fails_that_file(db, engine, make_file):
    record = await make_file("a.pdf", backend_type="s3", write=False)

    result = await engine.rollback("s3")

    assert (result.processed, result.failed) == (1, 1)
    assert result.errors[record.id] == "Original storage not found in metadata"
    entry = db.scalars(select(SyncLogEntry).where(SyncLogEntry.file_id == record.id)).one()
    assert entry.status == LogStatus.FAILED
    assert entry.error_message == "Original storage not found in metadata"
    db.refresh(record)
    assert record.backend_type == "s3"


@pytest.mark.asyncio
async def test_snapshot_restores_pointers(db, engine, to_s3, make_file):
    record = await make_file("a.pdf")
    snapshot = engine.create_snapshot("before-s3")
    assert snapshot.file_count == 1

    await engine.execute(to_s3)
    db.refresh(record)
    assert record.backend_type == "s3"

    result = engine.restore_snapshot("before-s3")

    assert (result.restored, result.failed) == (1, 0)
    db.refresh(record)
    assert record.backend_type == "local"
    assert record.backend_path is None
    assert record.uri == "a.pdf"


@pytest.mark.asyncio
async def test_snapshot_restore_reports_deleted_files(db, engine, make_file):
    record = await make_file("a.pdf")
    engine.create_snapshot("snap")
    file_id = record.id
    db.delete(record)
    db.commit()

    result = engine.restore_snapshot("snap")

    assert result.failed == 1
    assert file_id in result.errors


def test_snapshot_names_are_unique(engine):
    engine.create_snapshot("snap")

    with pytest.raises(SnapshotExistsError):
        engine.create_snapshot("snap")


def test_snapshot_list_and_delete(engine):
    engine.create_snapshot("one")
    engine.create_snapshot("two")

    assert {s.name for s in engine.list_snapshots()} == {"one", "two"}

    engine.delete_snapshot("one")
    assert [s.name for s in engine.list_snapshots()] == ["two"]

    with pytest.raises(SnapshotNotFoundError):
        engine.delete_snapshot("one")
    with pytest.raises(SnapshotNotFoundError):
        engine.restore_snapshot("one")


@pytest.mark.asyncio
async def test_progress_and_eta_without_history(engine, make_file):
    await make_file("a.pdf")
    await make_file("b.pdf")
    await make_file("c.pdf", backend_type="s3", write=False)

    progress = engine.get_progress("s3")
    eta = engine.estimate_time_remaining("s3")

    assert progress == {
        "total": 3,
        "completed": 1,
        "remaining": 2,
        "percentage": 33.3,
        "target_storage": "s3",
    }
    assert eta["remaining_files"] == 2
    assert eta["avg_time_per_file"] == FALLBACK_SECONDS_PER_FILE
    assert eta["estimated_seconds"] == 4


@pytest.mark.asyncio
async def test_report_recommendations(db, engine, make_file):
    await make_file("a.pdf", entity_table="civicrm_contact")
    await make_file("b.pdf", sync_status=SyncStatus.FAILED)

    report = engine.generate_report()

    assert report["by_storage"]["local"] == {"count": 2, "percentage": 100.0}
    assert report["by_entity"] == {"contact": 1}
    assert [r["type"] for r in report["recommendations"]] == ["cost_savings", "maintenance"]


@pytest.mark.asyncio
async def test_retry_failed(db, engine, make_file):
    record = await make_file("a.pdf", sync_status=SyncStatus.FAILED)

    result = await engine.retry_failed("s3")

    assert result.success == 1
    db.refresh(record)
    assert record.backend_type == "s3"
    assert record.sync_status == SyncStatus.SYNCED

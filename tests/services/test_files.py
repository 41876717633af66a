"""
Tests for the file service.
"""
import dataclasses

import pytest
from sqlalchemy import select

from filestorage.models.entity_file import EntityFile
from filestorage.models.file_record import SyncStatus
from filestorage.models.sync_log import LogStatus, SyncLogEntry, SyncOperation
from filestorage.services.files import FileService, UploadValidationError, guess_mime_type
from filestorage.services.policy import PlacementRule
from filestorage.services.registry import BackendRegistry
from filestorage.storage.exceptions import FileSizeExceededError, NotFoundError


@pytest.fixture
def service(db, registry, policy):
    return FileService(db, registry, policy, actor="tests")


async def _stream(*parts: bytes):
    for part in parts:
        yield part


def test_guess_mime_type():
    assert guess_mime_type("report.PDF") == "application/pdf"
    assert guess_mime_type("photo.jpeg") == "image/jpeg"
    assert guess_mime_type("README") == "application/octet-stream"


def test_validate_upload(service, policy):
    assert service.validate_upload("report.pdf", 100).valid

    too_big = service.validate_upload("report.pdf", policy.max_upload_bytes + 1)
    assert not too_big.valid
    assert "exceeds maximum allowed" in too_big.errors[0]

    blocked = service.validate_upload("install.sh", 10, mime_type="application/x-sh")
    assert blocked.errors == ["File type 'application/x-sh' is blocked for security reasons"]

    assert service.validate_upload("bad:name?.pdf", 10).errors == ["Filename contains invalid characters"]


@pytest.mark.asyncio
async def test_upload_creates_record_and_association(db, service, local_backend):
    record = await service.upload(
        b"%PDF-1.4 data",
        "Annual Report.pdf",
        entity_type="activity",
        entity_id=12,
        description="Q4",
    )

    assert record.backend_type == "local"
    assert record.backend_path.startswith("activity/")
    assert record.backend_path.endswith(".pdf")
    assert record.mime_type == "application/pdf"
    assert record.size == 13
    assert record.sync_status == SyncStatus.SYNCED
    assert record.backend_metadata["original_filename"] == "Annual Report.pdf"
    assert await local_backend.read(record.backend_path) == b"%PDF-1.4 data"

    association = db.scalars(select(EntityFile).where(EntityFile.file_id == record.id)).one()
    assert association.entity_table == "civicrm_activity"
    assert association.entity_id == 12

    entry = db.scalars(select(SyncLogEntry).where(SyncLogEntry.file_id == record.id)).one()
    assert entry.operation == SyncOperation.UPLOAD
    assert entry.status == LogStatus.SUCCESS


@pytest.mark.asyncio
async def test_upload_sanitizes_filename(service):
    record = await service.upload(b"data", "../../etc/pass;wd.txt")

    assert ".." not in record.backend_path.split("/")
    assert record.backend_path.startswith("files/")


@pytest.mark.asyncio
async def test_upload_from_stream_measures_size(service):
    record = await service.upload(_stream(b"abc", b"def"), "notes.txt")

    assert record.size == 6
    assert record.mime_type == "text/plain"


@pytest.mark.asyncio
async def test_upload_follows_placement_rules(db, policy, local_backend, remote_backend):
    image_policy = dataclasses.replace(
        policy, placement_rules=(PlacementRule(backend="s3", mime_pattern="image/*"),)
    )
    registry = BackendRegistry(image_policy)
    registry.register("local", local_backend)
    registry.register("s3", remote_backend)
    service = FileService(db, registry, image_policy)

    image = await service.upload(b"\x89PNG", "logo.png")
    document = await service.upload(b"text", "notes.txt")

    assert image.backend_type == "s3"
    assert await remote_backend.exists(image.backend_path)
    assert document.backend_type == "local"


@pytest.mark.asyncio
async def test_upload_size_limit(service, policy):
    with pytest.raises(FileSizeExceededError):
        await service.upload(_stream(b"x"), "a.txt", size=policy.max_upload_bytes + 1)


@pytest.mark.asyncio
async def test_upload_blocked_type(service):
    with pytest.raises(UploadValidationError) as exc_info:
        await service.upload(b"#!/bin/sh", "run.sh", mime_type="application/x-sh")

    assert exc_info.value.errors == ["File type 'application/x-sh' is blocked for security reasons"]


@pytest.mark.asyncio
async def test_download(service, make_file):
    record = await make_file("a.pdf", content=b"payload")

    assert await service.download(record.id) == b"payload"

    _, stream = service.download_stream(record.id)
    assert b"".join([chunk async for chunk in stream]) == b"payload"


@pytest.mark.asyncio
async def test_download_missing(service, make_file):
    record = await make_file("a.pdf", write=False)

    with pytest.raises(NotFoundError):
        await service.download(record.id)
    with pytest.raises(ValueError):
        await service.download(999)


@pytest.mark.asyncio
async def test_delete(db, service, make_file, local_backend):
    record = await make_file("a.pdf")
    file_id = record.id

    warnings = await service.delete(file_id)

    assert warnings == []
    assert not await local_backend.exists("a.pdf")
    with pytest.raises(ValueError):
        service.get_record(file_id)


@pytest.mark.asyncio
async def test_get_url(service, make_file):
    local = await make_file("a.pdf")
    cdn = await make_file("b.pdf", backend_metadata={"cdn_url": "https://cdn.example.org/"})

    assert await service.get_url(local.id) == "/files/a.pdf"
    assert await service.get_url(cdn.id) == "https://cdn.example.org/b.pdf"


@pytest.mark.asyncio
async def test_get_metadata(service, make_file):
    record = await make_file("a.pdf", content=b"12345")

    metadata = await service.get_metadata(record.id, include_storage_metadata=True)

    assert metadata["filename"] == "a.pdf"
    assert metadata["storage_type"] == "local"
    assert metadata["size"] == 5
    assert metadata["size_formatted"] == "5 B"


@pytest.mark.asyncio
async def test_copy_to_storage(db, service, make_file, remote_backend, local_backend):
    record = await make_file("a.pdf")

    moved = await service.copy_to_storage(record.id, "s3", delete_source=True)

    assert moved.backend_type == "s3"
    assert moved.backend_metadata["original_backend"] == "local"
    assert await remote_backend.exists(moved.backend_path)
    assert not await local_backend.exists("a.pdf")
    entry = db.scalars(
        select(SyncLogEntry).where(SyncLogEntry.file_id == record.id)
    ).one()
    assert entry.operation == SyncOperation.COPY

    # Already there: unchanged
    assert (await service.copy_to_storage(record.id, "s3")).backend_path == moved.backend_path


@pytest.mark.asyncio
async def test_copy_to_storage_failure_marks_record(db, service, make_file):
    record = await make_file("a.pdf", write=False)

    with pytest.raises(NotFoundError):
        await service.copy_to_storage(record.id, "s3")

    db.refresh(record)
    assert record.sync_status == SyncStatus.FAILED


@pytest.mark.asyncio
async def test_batch_update_storage(service, make_file):
    ok = await make_file("a.pdf")
    missing = await make_file("b.pdf", write=False)

    result = await service.batch_update_storage([ok.id, missing.id, 999], "s3")

    assert (result.processed, result.success, result.failed) == (3, 1, 2)
    assert set(result.errors) == {missing.id, 999}


@pytest.mark.asyncio
async def test_statistics(service, make_file):
    await make_file("a.pdf", content=b"12", entity_table="civicrm_contact")
    await make_file("b.pdf", content=b"345", backend_type="s3", write=False)

    stats = service.get_statistics()

    assert stats == {
        "total_files": 2,
        "total_size": 5,
        "by_storage": {"local": 1, "s3": 1},
        "by_entity": {"contact": 1},
    }

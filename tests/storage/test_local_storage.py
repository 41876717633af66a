"""
Unit tests for LocalStorageBackend.
"""
import inspect

import pytest

from filestorage.storage.base import VISIBILITY_PRIVATE, StorageBackend
from filestorage.storage.exceptions import NotFoundError, PathSecurityError
from filestorage.storage.local import LocalStorageBackend


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


@pytest.mark.asyncio
async def test_write_and_read_bytes(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path))

    assert await storage.write("contact/2024/01/01/a.txt", b"hello") is True

    assert await storage.read("contact/2024/01/01/a.txt") == b"hello"
    assert (tmp_path / "contact" / "2024" / "01" / "01" / "a.txt").read_bytes() == b"hello"


@pytest.mark.asyncio
async def test_write_from_async_stream(tmp_path):
    """Test that chunked content is written in order."""
    storage = LocalStorageBackend(base_path=str(tmp_path))

    await storage.write("files/stream.bin", _chunks(b"abc", b"", b"def"))

    assert await storage.read("files/stream.bin") == b"abcdef"


@pytest.mark.asyncio
async def test_write_leaves_no_temp_files(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path))

    await storage.write("files/a.txt", b"one")
    await storage.write("files/a.txt", b"two")

    assert sorted(p.name for p in (tmp_path / "files").iterdir()) == ["a.txt"]
    assert await storage.read("files/a.txt") == b"two"


@pytest.mark.asyncio
async def test_failed_stream_removes_partial_file(tmp_path):
    """A source that fails mid-stream leaves nothing behind and keeps its error type."""
    storage = LocalStorageBackend(base_path=str(tmp_path))

    async def broken():
        yield b"partial"
        raise NotFoundError("source/missing.txt")

    with pytest.raises(NotFoundError):
        await storage.write("files/a.txt", broken())

    assert not await storage.exists("files/a.txt")
    assert list((tmp_path / "files").iterdir()) == []


@pytest.mark.asyncio
async def test_read_stream(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path))
    payload = b"x" * (200 * 1024)
    await storage.write("files/big.bin", payload)

    chunks = [chunk async for chunk in storage.read_stream("files/big.bin")]

    assert len(chunks) > 1
    assert b"".join(chunks) == payload


@pytest.mark.asyncio
async def test_read_missing_raises_not_found(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path))

    with pytest.raises(NotFoundError) as exc_info:
        await storage.read("files/missing.txt")
    assert exc_info.value.path == "files/missing.txt"

    with pytest.raises(NotFoundError):
        async for _ in storage.read_stream("files/missing.txt"):
            pass


@pytest.mark.asyncio
async def test_delete_is_idempotent(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path))
    await storage.write("files/a.txt", b"data")

    assert await storage.delete("files/a.txt") is True
    assert await storage.exists("files/a.txt") is False
    # Deleting again is not an error
    assert await storage.delete("files/a.txt") is True


@pytest.mark.asyncio
async def test_copy_and_move(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path))
    await storage.write("files/a.txt", b"data")

    await storage.copy("files/a.txt", "archive/a.txt")
    assert await storage.exists("files/a.txt")
    assert await storage.read("archive/a.txt") == b"data"

    await storage.move("archive/a.txt", "moved/a.txt")
    assert not await storage.exists("archive/a.txt")
    assert await storage.read("moved/a.txt") == b"data"


@pytest.mark.asyncio
async def test_get_metadata(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path))
    await storage.write("files/report.pdf", b"%PDF-1.4")

    meta = await storage.get_metadata("files/report.pdf")

    assert meta.size == 8
    assert meta.mime_type == "application/pdf"
    assert meta.last_modified is not None
    assert await storage.get_size("files/report.pdf") == 8
    assert await storage.get_mime_type("files/report.pdf") == "application/pdf"


@pytest.mark.asyncio
async def test_get_url(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path), base_url="https://example.com/files/")

    assert await storage.get_url("files/a.txt") == "https://example.com/files/files/a.txt"
    assert await storage.get_url("files/a.txt", ttl=0) == "https://example.com/files/files/a.txt"


@pytest.mark.asyncio
async def test_list_contents(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path))
    await storage.write("contact/2024/a.txt", b"a")
    await storage.write("contact/2024/b.txt", b"b")
    await storage.write("contact/c.txt", b"c")

    assert await storage.list_contents("contact") == ["contact/2024", "contact/c.txt"]
    assert await storage.list_contents("contact", recursive=True) == [
        "contact/2024/a.txt",
        "contact/2024/b.txt",
        "contact/c.txt",
    ]
    assert await storage.list_contents("nothing-here") == []


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["../escape.txt", "/etc/passwd", "files/../../x", "a\0b"])
async def test_unsafe_paths_are_rejected(tmp_path, path):
    """Test that no operation touches the filesystem for an unsafe path."""
    storage = LocalStorageBackend(base_path=str(tmp_path / "root"))

    with pytest.raises(PathSecurityError):
        await storage.write(path, b"data")
    with pytest.raises(PathSecurityError):
        await storage.read(path)
    with pytest.raises(PathSecurityError):
        await storage.exists(path)
    with pytest.raises(PathSecurityError):
        await storage.delete(path)

    assert not (tmp_path / "escape.txt").exists()


@pytest.mark.asyncio
async def test_test_connection(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path / "new"))

    assert await storage.test_connection() is True
    assert await storage.list_contents() == []


def test_type_and_config(tmp_path):
    storage = LocalStorageBackend(base_path=str(tmp_path), base_url="/files")

    assert storage.get_type() == "local"
    assert storage.get_config() == {
        "type": "local",
        "base_path": str(tmp_path),
        "base_url": "/files",
    }


def test_write_defaults_match_backend_contract():
    local_default = inspect.signature(LocalStorageBackend.write).parameters["visibility"].default
    contract_default = inspect.signature(StorageBackend.write).parameters["visibility"].default

    assert local_default == contract_default == VISIBILITY_PRIVATE

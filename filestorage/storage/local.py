"""
Local filesystem storage implementation.

This module provides the local disk backend. Objects live under a base
directory using the same relative paths the object-store backends use as
keys, so files can move between backends without renaming.
"""
import mimetypes
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import aiofiles
import aiofiles.os

from filestorage.config import settings
from filestorage.storage.base import (
    CHUNK_SIZE,
    DEFAULT_URL_TTL,
    VISIBILITY_PRIVATE,
    VISIBILITY_PUBLIC,
    Content,
    ObjectMetadata,
    StorageBackend,
    iter_content,
)
from filestorage.storage.exceptions import NotFoundError, StorageError
from filestorage.utils.paths import join, validate_path


class LocalStorageBackend(StorageBackend):
    """
    Local filesystem storage with async operations.

    Layout: <base_path>/<entity>/<YYYY>/<MM>/<DD>/<file>
    """

    def __init__(self, base_path: str | None = None, base_url: str | None = None):
        """
        Initialize local storage backend.

        Args:
            base_path: Base directory for file storage (default from config)
            base_url: Public URL prefix for stored files (default from config)
        """
        self.base_path = Path(base_path or settings.LOCAL_STORAGE_PATH)
        self.base_url = (base_url if base_url is not None else settings.LOCAL_STORAGE_URL).rstrip("/")

    async def write(
        self,
        path: str,
        content: Content,
        mime_type: str | None = None,
        visibility: str = VISIBILITY_PRIVATE,
        metadata: dict[str, str] | None = None,
    ) -> bool:
        """
        Stream content to disk in chunks.

        Visibility is not enforced on disk; objects are served from base_url.

        Data is written to a temporary sibling file and renamed into place,
        so readers never observe a partially written object.
        """
        file_path = self._get_file_path(path)
        self._ensure_directory_exists(file_path)
        temp_path = file_path.with_name(f".{file_path.name}.{uuid.uuid4().hex[:8]}.part")

        try:
            async with aiofiles.open(temp_path, "wb") as f:
                async for chunk in iter_content(content):
                    await f.write(chunk)
            os.replace(temp_path, file_path)
        except StorageError:
            # the content stream failed (e.g. its source object is gone)
            temp_path.unlink(missing_ok=True)
            raise
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {path}: {e}") from e

        return True

    async def read(self, path: str) -> bytes:
        file_path = self._get_existing_path(path)
        async with aiofiles.open(file_path, "rb") as f:
            return await f.read()

    async def read_stream(self, path: str) -> AsyncIterator[bytes]:
        file_path = self._get_existing_path(path)
        async with aiofiles.open(file_path, "rb") as f:
            while True:
                chunk = await f.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    async def delete(self, path: str) -> bool:
        """
        Delete a file from storage.

        Missing files are treated as already deleted.
        """
        file_path = self._get_file_path(path)

        try:
            await aiofiles.os.remove(file_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e

        return True

    async def exists(self, path: str) -> bool:
        return self._get_file_path(path).is_file()

    async def copy(self, source: str, destination: str) -> bool:
        source_path = self._get_existing_path(source)
        destination_path = self._get_file_path(destination)
        self._ensure_directory_exists(destination_path)

        try:
            shutil.copy2(source_path, destination_path)
        except OSError as e:
            raise StorageError(f"Failed to copy {source} to {destination}: {e}") from e

        return True

    async def move(self, source: str, destination: str) -> bool:
        source_path = self._get_existing_path(source)
        destination_path = self._get_file_path(destination)
        self._ensure_directory_exists(destination_path)

        try:
            shutil.move(source_path, destination_path)
        except OSError as e:
            raise StorageError(f"Failed to move {source} to {destination}: {e}") from e

        return True

    async def get_url(self, path: str, ttl: int = DEFAULT_URL_TTL) -> str:
        """Direct URL under base_url. Local files have no expiring URLs, so ttl is ignored."""
        validate_path(path)
        return f"{self.base_url}/{path}"

    async def get_metadata(self, path: str) -> ObjectMetadata:
        file_path = self._get_existing_path(path)
        stat = file_path.stat()
        mime_type, _ = mimetypes.guess_type(file_path.name)

        return ObjectMetadata(
            path=path,
            size=stat.st_size,
            mime_type=mime_type or "application/octet-stream",
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            visibility=VISIBILITY_PUBLIC,
            provider_metadata={"permissions": oct(stat.st_mode & 0o777)},
        )

    async def list_contents(self, prefix: str = "", recursive: bool = False) -> list[str]:
        prefix = prefix.strip("/")
        if prefix:
            validate_path(prefix)
        directory = self.base_path / prefix if prefix else self.base_path

        if not directory.is_dir():
            return []

        entries = directory.rglob("*") if recursive else directory.iterdir()
        results = []
        for entry in entries:
            if entry.name.startswith(".") or (recursive and entry.is_dir()):
                continue
            results.append(entry.relative_to(self.base_path).as_posix())

        return sorted(results)

    async def test_connection(self) -> bool:
        """Write, read back and delete a probe file under base_path."""
        probe = f".filestorage_test_{uuid.uuid4().hex[:8]}"
        probe_path = self.base_path / probe

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(probe_path, "wb") as f:
                await f.write(b"test")
            async with aiofiles.open(probe_path, "rb") as f:
                ok = await f.read() == b"test"
            probe_path.unlink()
            return ok
        except OSError:
            return False

    def get_type(self) -> str:
        return "local"

    def get_config(self) -> dict[str, Any]:
        return {
            "type": "local",
            "base_path": str(self.base_path),
            "base_url": self.base_url,
        }

    def _get_file_path(self, path: str) -> Path:
        """
        Resolve a relative storage path under base_path.

        Raises:
            PathSecurityError: If the path is unsafe
        """
        validate_path(path)
        return self.base_path / join(path)

    def _get_existing_path(self, path: str) -> Path:
        file_path = self._get_file_path(path)
        if not file_path.is_file():
            raise NotFoundError(path)
        return file_path

    def _ensure_directory_exists(self, file_path: Path) -> None:
        """
        Ensure the parent directory exists.

        Args:
            file_path: File path that needs parent directory
        """
        directory = file_path.parent
        directory.mkdir(parents=True, exist_ok=True)

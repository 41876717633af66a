"""
Abstract base class for storage backends.

This module defines the contract every backend (local disk, S3-compatible,
GCS, Azure Blob) implements, plus small helpers shared by the adapters.
"""
import asyncio
import functools
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import IO, Any, AsyncIterator, Callable, TypeVar, Union

from filestorage.storage.exceptions import NotFoundError, VerificationMismatchError

T = TypeVar("T")

CHUNK_SIZE = 64 * 1024  # 64KB
SPOOL_MAX_MEMORY = 8 * 1024 * 1024  # 8MB before spilling to disk

DEFAULT_URL_TTL = 3600
MAX_URL_TTL = 86400

VISIBILITY_PUBLIC = "public"
VISIBILITY_PRIVATE = "private"

Content = Union[bytes, AsyncIterator[bytes]]

SECRET_FIELDS = (
    "secret",
    "key",
    "account_key",
    "connection_string",
    "credentials",
    "password",
    "sas_token",
)


@dataclass
class ObjectMetadata:
    """Metadata reported by a backend for a stored object."""

    path: str
    size: int
    mime_type: str
    last_modified: datetime | None = None
    visibility: str = VISIBILITY_PRIVATE
    provider_metadata: dict[str, Any] = field(default_factory=dict)


def clamp_ttl(ttl: int, max_ttl: int = MAX_URL_TTL) -> int:
    """Bound a signed-URL lifetime to [0, max_ttl] seconds."""
    return max(0, min(int(ttl), max_ttl))


def mask_secret(value: Any) -> str:
    """Mask a credential, keeping only its first four characters."""
    text = str(value or "")
    if not text:
        return ""
    return f"{text[:4]}***"


def sanitize_config(config: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a backend config with every credential masked."""
    sanitized = {}
    for key, value in config.items():
        if key in SECRET_FIELDS:
            sanitized[key] = mask_secret(value) if value else value
        else:
            sanitized[key] = value
    return sanitized


async def iter_content(content: Content) -> AsyncIterator[bytes]:
    """Yield chunks from either buffered bytes or an async byte iterator."""
    if isinstance(content, (bytes, bytearray, memoryview)):
        data = bytes(content)
        for offset in range(0, len(data), CHUNK_SIZE):
            yield data[offset:offset + CHUNK_SIZE]
        return

    async for chunk in content:
        if chunk:
            yield chunk


async def spool_content(content: Content) -> tuple[IO[bytes], int]:
    """
    Collect content into a spooled temporary file.

    Small payloads stay in memory, larger ones spill to disk, so SDKs that
    need a seekable file object never force the whole payload into RAM.

    Returns:
        (file object positioned at 0, total size in bytes)
    """
    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
    total_size = 0
    async for chunk in iter_content(content):
        spool.write(chunk)
        total_size += len(chunk)
    spool.seek(0)
    return spool, total_size


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking SDK call in the default executor."""
    return await asyncio.get_running_loop().run_in_executor(
        None, functools.partial(func, *args, **kwargs)
    )


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    All operations except ``exists`` and ``test_connection`` raise a
    ``StorageError`` subclass on failure instead of returning a sentinel.
    """

    @abstractmethod
    async def write(
        self,
        path: str,
        content: Content,
        mime_type: str | None = None,
        visibility: str = VISIBILITY_PRIVATE,
        metadata: dict[str, str] | None = None,
    ) -> bool:
        """
        Create or overwrite an object.

        Args:
            path: Relative storage path
            content: Bytes or an async iterator yielding chunks
            mime_type: MIME type stored with the object
            visibility: "public" or "private"
            metadata: Extra provider metadata

        Returns:
            True once the object has been written

        Raises:
            PathSecurityError: If the path is unsafe
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def read(self, path: str) -> bytes:
        """
        Read a whole object into memory.

        Raises:
            NotFoundError: If the object doesn't exist
        """
        pass

    @abstractmethod
    def read_stream(self, path: str) -> AsyncIterator[bytes]:
        """
        Stream an object in chunks.

        Returns:
            Async iterator of byte chunks. NotFoundError is raised on the
            first iteration when the object doesn't exist.
        """
        pass

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """
        Delete an object.

        Deleting an object that does not exist is not an error.

        Returns:
            True
        """
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """
        Check if an object exists.

        Returns:
            True if the object exists, False otherwise

        Raises:
            AuthFailureError, TransportFailureError: Only when the backend
                cannot answer the question
        """
        pass

    async def copy(self, source: str, destination: str) -> bool:
        """
        Copy an object within this backend.

        Backends with a native server-side copy override this.
        """
        meta = await self.get_metadata(source)
        return await self.write(
            destination,
            self.read_stream(source),
            mime_type=meta.mime_type,
            visibility=meta.visibility,
        )

    async def move(self, source: str, destination: str) -> bool:
        """
        Move an object within this backend.

        The source is deleted only after the destination is confirmed.

        Raises:
            VerificationMismatchError: If the copy cannot be confirmed
        """
        await self.copy(source, destination)
        if not await self.exists(destination):
            raise VerificationMismatchError(
                f"Move aborted: {destination} missing after copy from {source}"
            )
        await self.delete(source)
        return True

    @abstractmethod
    async def get_url(self, path: str, ttl: int = DEFAULT_URL_TTL) -> str:
        """
        Get a URL for an object.

        Args:
            path: Relative storage path
            ttl: 0 for a permanent URL (public objects only), otherwise the
                lifetime of a signed URL in seconds, capped at 24 hours

        Returns:
            URL string
        """
        pass

    @abstractmethod
    async def get_metadata(self, path: str) -> ObjectMetadata:
        """
        Get metadata for an object.

        Raises:
            NotFoundError: If the object doesn't exist
        """
        pass

    async def get_size(self, path: str) -> int:
        """Size of an object in bytes."""
        return (await self.get_metadata(path)).size

    async def get_mime_type(self, path: str) -> str:
        """MIME type recorded for an object."""
        return (await self.get_metadata(path)).mime_type

    @abstractmethod
    async def list_contents(self, prefix: str = "", recursive: bool = False) -> list[str]:
        """
        List object paths under a prefix.

        Non-recursive listings return only direct children, with nested
        "directories" collapsed into their first path segment.
        """
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Return True if the backend is usable. Never raises."""
        pass

    @abstractmethod
    def get_type(self) -> str:
        """Backend type token (local, s3, spaces, gcs, azure)."""
        pass

    @abstractmethod
    def get_config(self) -> dict[str, Any]:
        """Backend configuration with credentials masked."""
        pass

    async def require(self, path: str) -> None:
        """Raise NotFoundError unless the object exists."""
        if not await self.exists(path):
            raise NotFoundError(path)

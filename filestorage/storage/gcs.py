"""
Google Cloud Storage implementation.

google-cloud-storage is synchronous, so every SDK call runs in the default
executor.
"""
from datetime import timedelta
from typing import Any, AsyncIterator

from google.api_core import exceptions as gcs_exceptions
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage

from filestorage.logging_config import setup_logging
from filestorage.storage.base import (
    CHUNK_SIZE,
    DEFAULT_URL_TTL,
    MAX_URL_TTL,
    VISIBILITY_PRIVATE,
    VISIBILITY_PUBLIC,
    Content,
    ObjectMetadata,
    StorageBackend,
    clamp_ttl,
    run_blocking,
    sanitize_config,
    spool_content,
)
from filestorage.storage.exceptions import (
    AuthFailureError,
    InvalidConfigError,
    NotFoundError,
    StorageError,
    TransportFailureError,
)
from filestorage.utils.paths import join, validate_path

logger = setup_logging()


class GCSStorageBackend(StorageBackend):
    """
    Google Cloud Storage backend.

    Config keys: project_id, bucket, and either key_file (path to a service
    account JSON file) or credentials (the parsed JSON); prefix and cdn_url
    are optional.
    """

    def __init__(self, config: dict[str, Any], client: Any = None):
        for required in ("project_id", "bucket"):
            if not config.get(required):
                raise InvalidConfigError(f"GCS storage requires '{required}' configuration")
        if client is None and not (config.get("key_file") or config.get("credentials")):
            raise InvalidConfigError("GCS storage requires 'key_file' or 'credentials' configuration")

        self.config = dict(config)
        self.project_id = config["project_id"]
        self.bucket_name = config["bucket"]
        self.prefix = (config.get("prefix") or "").strip("/")
        self.cdn_url = (config.get("cdn_url") or "").rstrip("/") or None

        if client is None:
            try:
                if config.get("key_file"):
                    client = storage.Client.from_service_account_json(
                        config["key_file"], project=self.project_id
                    )
                else:
                    client = storage.Client.from_service_account_info(
                        config["credentials"], project=self.project_id
                    )
            except (GoogleAuthError, OSError, ValueError) as e:
                raise InvalidConfigError(f"Failed to initialize GCS client: {e}") from e

        self.client = client
        self.bucket = self.client.bucket(self.bucket_name)

    async def write(
        self,
        path: str,
        content: Content,
        mime_type: str | None = None,
        visibility: str = VISIBILITY_PRIVATE,
        metadata: dict[str, str] | None = None,
    ) -> bool:
        blob = self._blob(path)
        if metadata:
            blob.metadata = {k: str(v) for k, v in metadata.items()}

        spool, size = await spool_content(content)
        try:
            await self._call(
                path,
                blob.upload_from_file,
                spool,
                size=size,
                content_type=mime_type or "application/octet-stream",
                predefined_acl="publicRead" if visibility == VISIBILITY_PUBLIC else "private",
            )
        finally:
            spool.close()

        return True

    async def read(self, path: str) -> bytes:
        return await self._call(path, self._blob(path).download_as_bytes)

    async def read_stream(self, path: str) -> AsyncIterator[bytes]:
        reader = await self._call(path, self._blob(path).open, "rb", chunk_size=CHUNK_SIZE * 16)
        try:
            while True:
                chunk = await self._call(path, reader.read, CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            reader.close()

    async def delete(self, path: str) -> bool:
        try:
            await self._call(path, self._blob(path).delete)
        except NotFoundError:
            pass
        return True

    async def exists(self, path: str) -> bool:
        return await self._call(path, self._blob(path).exists)

    async def copy(self, source: str, destination: str) -> bool:
        await self._call(
            source,
            self.bucket.copy_blob,
            self._blob(source),
            self.bucket,
            self._get_key(destination),
        )
        return True

    async def get_url(self, path: str, ttl: int = DEFAULT_URL_TTL) -> str:
        key = self._get_key(path)

        if ttl == 0:
            if self.cdn_url:
                return f"{self.cdn_url}/{key}"
            if await self._is_public(path):
                return f"https://storage.googleapis.com/{self.bucket_name}/{key}"
            ttl = MAX_URL_TTL

        return await self._call(
            path,
            self._blob(path).generate_signed_url,
            version="v4",
            expiration=timedelta(seconds=clamp_ttl(ttl)),
            method="GET",
        )

    async def get_metadata(self, path: str) -> ObjectMetadata:
        blob = await self._call(path, self.bucket.get_blob, self._get_key(path))
        if blob is None:
            raise NotFoundError(path)

        return ObjectMetadata(
            path=path,
            size=int(blob.size or 0),
            mime_type=blob.content_type or "application/octet-stream",
            last_modified=blob.updated,
            visibility=VISIBILITY_PRIVATE,
            provider_metadata={
                "md5_hash": blob.md5_hash,
                "generation": blob.generation,
                "metadata": blob.metadata or {},
            },
        )

    async def list_contents(self, prefix: str = "", recursive: bool = False) -> list[str]:
        list_prefix = self._get_key(prefix) if prefix.strip("/") else self.prefix
        if list_prefix:
            list_prefix = f"{list_prefix.rstrip('/')}/"

        def _list() -> list[str]:
            iterator = self.client.list_blobs(
                self.bucket_name,
                prefix=list_prefix or None,
                delimiter=None if recursive else "/",
            )
            names = [blob.name for blob in iterator]
            # prefixes are only populated once the iterator has been consumed
            names.extend(p.rstrip("/") for p in getattr(iterator, "prefixes", ()))
            return names

        names = await self._call(prefix or "/", _list)
        return sorted(self._strip_prefix(name) for name in names)

    async def test_connection(self) -> bool:
        try:
            await run_blocking(
                lambda: list(self.client.list_blobs(self.bucket_name, max_results=1))
            )
            return True
        except Exception as e:
            logger.warning(f"GCS connection test failed for bucket '{self.bucket_name}': {e}")
            return False

    def get_type(self) -> str:
        return "gcs"

    def get_config(self) -> dict[str, Any]:
        return sanitize_config(
            {
                "type": "gcs",
                "project_id": self.project_id,
                "bucket": self.bucket_name,
                "prefix": self.prefix,
                "cdn_url": self.cdn_url,
                "key_file": self.config.get("key_file"),
                "credentials": "provided" if self.config.get("credentials") else None,
            }
        )

    async def _is_public(self, path: str) -> bool:
        blob = self._blob(path)
        await self._call(path, blob.acl.reload)
        return "READER" in blob.acl.all().get_roles()

    def _blob(self, path: str):
        return self.bucket.blob(self._get_key(path))

    def _get_key(self, path: str) -> str:
        validate_path(path)
        return join(self.prefix, path)

    def _strip_prefix(self, name: str) -> str:
        if self.prefix and name.startswith(f"{self.prefix}/"):
            return name[len(self.prefix) + 1:]
        return name

    async def _call(self, path: str, func, *args, **kwargs):
        try:
            return await run_blocking(func, *args, **kwargs)
        except (gcs_exceptions.GoogleAPIError, GoogleAuthError) as e:
            raise self._translate_error(path, e) from e

    def _translate_error(self, path: str, error: Exception) -> StorageError:
        """Map a Google API error onto the storage error taxonomy."""
        if isinstance(error, gcs_exceptions.NotFound):
            return NotFoundError(path)
        if isinstance(error, (gcs_exceptions.Forbidden, gcs_exceptions.Unauthorized, GoogleAuthError)):
            return AuthFailureError(f"GCS access denied for {path}: {error}")
        return TransportFailureError(f"GCS request failed for {path}: {error}")

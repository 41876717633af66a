"""
Azure Blob Storage implementation.

azure-storage-blob's default client is synchronous, so every SDK call runs
in the default executor.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContainerClient,
    ContentSettings,
    generate_blob_sas,
)

from filestorage.logging_config import setup_logging
from filestorage.storage.base import (
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


class AzureStorageBackend(StorageBackend):
    """
    Azure Blob Storage backend.

    Config keys: container (required) and either connection_string or
    account_name + account_key; prefix and cdn_url are optional.

    Azure has no per-blob ACL, so visibility is recorded in blob metadata
    and public URLs are only handed out for blobs marked public.
    """

    def __init__(self, config: dict[str, Any], container: ContainerClient | None = None):
        if not config.get("container"):
            raise InvalidConfigError("Azure storage requires 'container' configuration")
        has_key_auth = config.get("account_name") and config.get("account_key")
        if container is None and not (config.get("connection_string") or has_key_auth):
            raise InvalidConfigError(
                "Azure storage requires 'connection_string' or 'account_name' and 'account_key'"
            )

        self.config = dict(config)
        self.container_name = config["container"]
        self.prefix = (config.get("prefix") or "").strip("/")
        self.cdn_url = (config.get("cdn_url") or "").rstrip("/") or None
        self.account_name = config.get("account_name")
        self.account_key = config.get("account_key")

        if container is None:
            service = self._build_service_client(config)
            self.account_name = self.account_name or service.account_name
            credential = getattr(service, "credential", None)
            self.account_key = self.account_key or getattr(credential, "account_key", None)
            container = service.get_container_client(self.container_name)

        self.container = container

    def _build_service_client(self, config: dict[str, Any]) -> BlobServiceClient:
        """Build the BlobServiceClient from a connection string or account key."""
        try:
            if config.get("connection_string"):
                return BlobServiceClient.from_connection_string(config["connection_string"])
            account_url = f"https://{config['account_name']}.blob.core.windows.net"
            return BlobServiceClient(account_url=account_url, credential=config["account_key"])
        except (AzureError, ValueError) as e:
            raise InvalidConfigError(f"Failed to initialize Azure client: {e}") from e

    async def write(
        self,
        path: str,
        content: Content,
        mime_type: str | None = None,
        visibility: str = VISIBILITY_PRIVATE,
        metadata: dict[str, str] | None = None,
    ) -> bool:
        blob_metadata = {k: str(v) for k, v in (metadata or {}).items()}
        blob_metadata["visibility"] = visibility

        spool, size = await spool_content(content)
        try:
            await self._call(
                path,
                self.container.upload_blob,
                self._get_key(path),
                spool,
                length=size,
                overwrite=True,
                content_settings=ContentSettings(content_type=mime_type or "application/octet-stream"),
                metadata=blob_metadata,
            )
        finally:
            spool.close()

        return True

    async def read(self, path: str) -> bytes:
        downloader = await self._call(path, self.container.download_blob, self._get_key(path))
        return await self._call(path, downloader.readall)

    async def read_stream(self, path: str) -> AsyncIterator[bytes]:
        downloader = await self._call(path, self.container.download_blob, self._get_key(path))
        chunks = downloader.chunks()
        while True:
            chunk = await self._call(path, next, chunks, None)
            if chunk is None:
                break
            yield chunk

    async def delete(self, path: str) -> bool:
        try:
            await self._call(path, self.container.delete_blob, self._get_key(path))
        except NotFoundError:
            pass
        return True

    async def exists(self, path: str) -> bool:
        blob_client = self.container.get_blob_client(self._get_key(path))
        return await self._call(path, blob_client.exists)

    async def get_url(self, path: str, ttl: int = DEFAULT_URL_TTL) -> str:
        key = self._get_key(path)
        blob_client = self.container.get_blob_client(key)

        if ttl == 0:
            if self.cdn_url:
                return f"{self.cdn_url}/{key}"
            meta = await self.get_metadata(path)
            if meta.visibility == VISIBILITY_PUBLIC:
                return blob_client.url
            ttl = MAX_URL_TTL

        if not (self.account_name and self.account_key):
            raise InvalidConfigError("Azure SAS URLs require an account key")

        sas_token = generate_blob_sas(
            account_name=self.account_name,
            container_name=self.container_name,
            blob_name=key,
            account_key=self.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(seconds=clamp_ttl(ttl)),
        )
        return f"{blob_client.url}?{sas_token}"

    async def get_metadata(self, path: str) -> ObjectMetadata:
        blob_client = self.container.get_blob_client(self._get_key(path))
        props = await self._call(path, blob_client.get_blob_properties)
        blob_metadata = dict(props.metadata or {})

        return ObjectMetadata(
            path=path,
            size=int(props.size or 0),
            mime_type=props.content_settings.content_type or "application/octet-stream",
            last_modified=props.last_modified,
            visibility=blob_metadata.get("visibility", VISIBILITY_PRIVATE),
            provider_metadata={"etag": (props.etag or "").strip('"'), "metadata": blob_metadata},
        )

    async def list_contents(self, prefix: str = "", recursive: bool = False) -> list[str]:
        list_prefix = self._get_key(prefix) if prefix.strip("/") else self.prefix
        if list_prefix:
            list_prefix = f"{list_prefix.rstrip('/')}/"

        def _list() -> list[str]:
            if recursive:
                items = self.container.list_blobs(name_starts_with=list_prefix or None)
            else:
                items = self.container.walk_blobs(name_starts_with=list_prefix or None, delimiter="/")
            return [item.name.rstrip("/") for item in items]

        names = await self._call(prefix or "/", _list)
        return sorted(self._strip_prefix(name) for name in names)

    async def test_connection(self) -> bool:
        try:
            await run_blocking(self.container.get_container_properties)
            return True
        except Exception as e:
            logger.warning(f"Azure connection test failed for container '{self.container_name}': {e}")
            return False

    def get_type(self) -> str:
        return "azure"

    def get_config(self) -> dict[str, Any]:
        return sanitize_config(
            {
                "type": "azure",
                "container": self.container_name,
                "account_name": self.account_name,
                "prefix": self.prefix,
                "cdn_url": self.cdn_url,
                "account_key": self.config.get("account_key"),
                "connection_string": self.config.get("connection_string"),
            }
        )

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
        except AzureError as e:
            raise self._translate_error(path, e) from e

    def _translate_error(self, path: str, error: AzureError) -> StorageError:
        """Map an Azure SDK error onto the storage error taxonomy."""
        if isinstance(error, ResourceNotFoundError):
            return NotFoundError(path)
        if isinstance(error, ClientAuthenticationError):
            return AuthFailureError(f"Azure credentials rejected for {path}: {error}")
        if isinstance(error, HttpResponseError) and error.status_code in (401, 403):
            return AuthFailureError(f"Azure access denied for {path}: {error}")
        if isinstance(error, HttpResponseError) and error.status_code == 404:
            return NotFoundError(path)
        return TransportFailureError(f"Azure request failed for {path}: {error}")

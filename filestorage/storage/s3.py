"""
S3-compatible storage implementation.

Serves AWS S3 and S3-compatible services (DigitalOcean Spaces, MinIO).
boto3 is synchronous, so every SDK call runs in the default executor.
"""
from typing import Any, AsyncIterator

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

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

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
AUTH_FAILURE_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "403",
}
ALL_USERS_GROUP = "http://acs.amazonaws.com/groups/global/AllUsers"
SPACES_DEFAULT_REGION = "nyc3"


class S3StorageBackend(StorageBackend):
    """
    S3-compatible storage backend using boto3.

    Config keys: key, secret, bucket (required); region (default
    us-east-1), prefix, endpoint, use_path_style, cdn_url (optional).
    """

    def __init__(self, config: dict[str, Any], client: Any = None):
        for required in ("key", "secret", "bucket"):
            if not config.get(required):
                raise InvalidConfigError(f"S3 storage requires '{required}' configuration")

        self.config = dict(config)
        self.bucket = config["bucket"]
        self.region = config.get("region") or "us-east-1"
        self.prefix = (config.get("prefix") or "").strip("/")
        self.endpoint = (config.get("endpoint") or "").rstrip("/") or None
        self.cdn_url = (config.get("cdn_url") or "").rstrip("/") or None

        if client is not None:
            self.client = client
            return

        client_config = None
        if self.endpoint and config.get("use_path_style", True):
            client_config = Config(s3={"addressing_style": "path"})

        try:
            self.client = boto3.client(
                "s3",
                region_name=self.region,
                endpoint_url=self.endpoint,
                aws_access_key_id=config["key"],
                aws_secret_access_key=config["secret"],
                config=client_config,
            )
        except (BotoCoreError, ValueError) as e:
            raise InvalidConfigError(f"Failed to initialize S3 client: {e}") from e

        logger.info(
            f"Created S3 client for bucket '{self.bucket}' "
            f"with endpoint: {self.endpoint or 'default'}"
        )

    async def write(
        self,
        path: str,
        content: Content,
        mime_type: str | None = None,
        visibility: str = VISIBILITY_PRIVATE,
        metadata: dict[str, str] | None = None,
    ) -> bool:
        """
        Upload an object.

        Content is spooled to a temporary file first; upload_fileobj then
        switches to multipart upload for large payloads.
        """
        key = self._get_key(path)
        extra_args: dict[str, Any] = {
            "ACL": "public-read" if visibility == VISIBILITY_PUBLIC else "private",
        }
        if mime_type:
            extra_args["ContentType"] = mime_type
        if metadata:
            extra_args["Metadata"] = {k: str(v) for k, v in metadata.items()}

        spool, _ = await spool_content(content)
        try:
            await self._call(
                path, self.client.upload_fileobj, spool, self.bucket, key, ExtraArgs=extra_args
            )
        finally:
            spool.close()

        return True

    async def read(self, path: str) -> bytes:
        response = await self._call(path, self.client.get_object, Bucket=self.bucket, Key=self._get_key(path))
        return await self._call(path, response["Body"].read)

    async def read_stream(self, path: str) -> AsyncIterator[bytes]:
        response = await self._call(path, self.client.get_object, Bucket=self.bucket, Key=self._get_key(path))
        chunks = response["Body"].iter_chunks(CHUNK_SIZE)
        try:
            while True:
                chunk = await self._call(path, next, chunks, None)
                if chunk is None:
                    break
                yield chunk
        finally:
            response["Body"].close()

    async def delete(self, path: str) -> bool:
        try:
            await self._call(path, self.client.delete_object, Bucket=self.bucket, Key=self._get_key(path))
        except NotFoundError:
            pass
        return True

    async def exists(self, path: str) -> bool:
        try:
            await self._call(path, self.client.head_object, Bucket=self.bucket, Key=self._get_key(path))
        except NotFoundError:
            return False
        return True

    async def copy(self, source: str, destination: str) -> bool:
        await self._call(
            source,
            self.client.copy_object,
            Bucket=self.bucket,
            CopySource={"Bucket": self.bucket, "Key": self._get_key(source)},
            Key=self._get_key(destination),
        )
        return True

    async def get_url(self, path: str, ttl: int = DEFAULT_URL_TTL) -> str:
        """
        URL for an object.

        ttl=0 returns the CDN or direct URL for public objects; private
        objects fall back to a signed URL with the maximum lifetime.
        """
        key = self._get_key(path)

        if ttl == 0:
            if self.cdn_url:
                return f"{self.cdn_url}/{key}"
            if await self._is_public(path, key):
                return self._direct_url(key)
            ttl = MAX_URL_TTL

        return await self._call(
            path,
            self.client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=clamp_ttl(ttl),
        )

    async def get_metadata(self, path: str) -> ObjectMetadata:
        result = await self._call(path, self.client.head_object, Bucket=self.bucket, Key=self._get_key(path))
        return ObjectMetadata(
            path=path,
            size=int(result.get("ContentLength", 0)),
            mime_type=result.get("ContentType") or "application/octet-stream",
            last_modified=result.get("LastModified"),
            visibility=VISIBILITY_PRIVATE,
            provider_metadata={
                "etag": (result.get("ETag") or "").strip('"'),
                "metadata": result.get("Metadata", {}),
            },
        )

    async def list_contents(self, prefix: str = "", recursive: bool = False) -> list[str]:
        list_prefix = self._get_key(prefix) if prefix.strip("/") else self.prefix
        if list_prefix:
            list_prefix = f"{list_prefix.rstrip('/')}/"

        params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": list_prefix}
        if not recursive:
            params["Delimiter"] = "/"

        def _list() -> list[str]:
            keys = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(**params):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
                keys.extend(
                    common["Prefix"].rstrip("/") for common in page.get("CommonPrefixes", [])
                )
            return keys

        keys = await self._call(prefix or "/", _list)
        return sorted(self._strip_prefix(key) for key in keys)

    async def test_connection(self) -> bool:
        try:
            await run_blocking(self.client.list_objects_v2, Bucket=self.bucket, MaxKeys=1)
            return True
        except Exception as e:
            logger.warning(f"S3 connection test failed for bucket '{self.bucket}': {e}")
            return False

    def get_type(self) -> str:
        if self.endpoint and "digitaloceanspaces.com" in self.endpoint:
            return "spaces"
        return "s3"

    def get_config(self) -> dict[str, Any]:
        return sanitize_config(
            {
                "type": self.get_type(),
                "bucket": self.bucket,
                "region": self.region,
                "prefix": self.prefix,
                "endpoint": self.endpoint,
                "cdn_url": self.cdn_url,
                "key": self.config.get("key"),
                "secret": self.config.get("secret"),
            }
        )

    async def _is_public(self, path: str, key: str) -> bool:
        acl = await self._call(path, self.client.get_object_acl, Bucket=self.bucket, Key=key)
        for grant in acl.get("Grants", []):
            grantee = grant.get("Grantee", {})
            if grantee.get("URI") == ALL_USERS_GROUP and grant.get("Permission") == "READ":
                return True
        return False

    def _direct_url(self, key: str) -> str:
        if self.endpoint:
            return f"{self.endpoint}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def _get_key(self, path: str) -> str:
        validate_path(path)
        return join(self.prefix, path)

    def _strip_prefix(self, key: str) -> str:
        if self.prefix and key.startswith(f"{self.prefix}/"):
            return key[len(self.prefix) + 1:]
        return key

    async def _call(self, path: str, func, *args, **kwargs):
        try:
            return await run_blocking(func, *args, **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(path, e) from e

    def _translate_error(self, path: str, error: Exception) -> StorageError:
        """Map a boto error onto the storage error taxonomy."""
        if isinstance(error, NoCredentialsError):
            return AuthFailureError(f"S3 credentials rejected: {error}")
        if isinstance(error, ClientError):
            code = str(error.response.get("Error", {}).get("Code", ""))
            if code in NOT_FOUND_CODES:
                return NotFoundError(path)
            if code in AUTH_FAILURE_CODES:
                return AuthFailureError(f"S3 access denied for {path}: {code}")
            return TransportFailureError(f"S3 request failed for {path}: {code or error}")
        return TransportFailureError(f"S3 request failed for {path}: {error}")


def spaces_backend(config: dict[str, Any], client: Any = None) -> S3StorageBackend:
    """
    S3 backend preconfigured for DigitalOcean Spaces.

    The endpoint is derived from ``region`` (default nyc3) unless given, and
    the Spaces CDN becomes the default cdn_url.
    """
    config = dict(config)
    region = config.get("region") or SPACES_DEFAULT_REGION
    config["region"] = region
    config.setdefault("endpoint", f"https://{region}.digitaloceanspaces.com")
    if not config.get("cdn_url") and config.get("bucket") and config.get("use_cdn", True):
        config["cdn_url"] = f"https://{config['bucket']}.{region}.cdn.digitaloceanspaces.com"
    return S3StorageBackend(config, client=client)

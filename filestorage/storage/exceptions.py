"""
Storage-specific exceptions.

Adapters translate provider errors into these types at their boundary, so
nothing above the storage layer needs to inspect SDK error shapes.
"""


class StorageError(Exception):
    """Base exception for storage operations."""

    pass


class NotFoundError(StorageError):
    """Raised when the requested object does not exist in storage."""

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(message or f"File not found: {path}")


class AuthFailureError(StorageError):
    """Raised when a backend rejects the configured credentials."""

    pass


class TransportFailureError(StorageError):
    """Raised when a backend cannot be reached or the request fails in transit."""

    pass


class InvalidConfigError(StorageError):
    """Raised when a backend configuration is missing or malformed."""

    pass


class ConfigNotFoundError(InvalidConfigError):
    """Raised when no active configuration exists for a backend type."""

    def __init__(self, storage_type: str, config_name: str | None = None):
        self.storage_type = storage_type
        self.config_name = config_name
        message = f"No active configuration found for storage type: {storage_type}"
        if config_name:
            message += f" (config: {config_name})"
        super().__init__(message)


class PathSecurityError(StorageError):
    """Raised when a path attempts traversal, is absolute or contains a null byte."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Unsafe storage path ({reason}): {path!r}")


class VerificationMismatchError(StorageError):
    """Raised when a copied object does not match its source."""

    pass


class MissingPathError(StorageError):
    """Raised when a file record has neither a backend path nor a URI."""

    def __init__(self, file_id: int):
        self.file_id = file_id
        super().__init__(f"File {file_id} has no storage path or URI")


class FileSizeExceededError(StorageError):
    """Raised when uploaded file exceeds maximum size limit."""

    def __init__(self, file_size: int, max_size: int):
        self.file_size = file_size
        self.max_size = max_size
        super().__init__(
            f"File size ({file_size} bytes) exceeds maximum allowed size ({max_size} bytes)"
        )


class SyncAlreadyRunningError(StorageError):
    """Raised when another sync batch holds the single-flight lock."""

    pass

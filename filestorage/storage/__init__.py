"""
Storage abstraction layer for file operations.

This package provides one async interface over local disk, S3-compatible
object stores, Google Cloud Storage and Azure Blob Storage.
"""

from filestorage.storage.exceptions import (
    AuthFailureError,
    ConfigNotFoundError,
    FileSizeExceededError,
    InvalidConfigError,
    MissingPathError,
    NotFoundError,
    PathSecurityError,
    StorageError,
    SyncAlreadyRunningError,
    TransportFailureError,
    VerificationMismatchError,
)
from filestorage.storage.base import ObjectMetadata, StorageBackend

__all__ = [
    "StorageBackend",
    "ObjectMetadata",
    "StorageError",
    "NotFoundError",
    "AuthFailureError",
    "TransportFailureError",
    "InvalidConfigError",
    "ConfigNotFoundError",
    "PathSecurityError",
    "VerificationMismatchError",
    "MissingPathError",
    "FileSizeExceededError",
    "SyncAlreadyRunningError",
]

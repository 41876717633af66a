"""
Storage dependency injection for FastAPI.

This module provides FastAPI dependency functions for injecting the
storage policy, the backend registry and the engines into endpoints.
"""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from filestorage.config import settings
from filestorage.database import get_db
from filestorage.services.files import FileService
from filestorage.services.migration import MigrationEngine
from filestorage.services.policy import StoragePolicy
from filestorage.services.registry import BackendRegistry
from filestorage.services.sync import SyncEngine


@lru_cache
def get_policy() -> StoragePolicy:
    """Return the storage policy built from settings."""
    return StoragePolicy.from_settings(settings)


@lru_cache
def get_registry() -> BackendRegistry:
    """
    Return the process-wide backend registry.

    Config mutations go through config_admin, which invalidates this
    registry's cache.
    """
    return BackendRegistry(get_policy())


def get_sync_engine(
    db: Session = Depends(get_db),
    registry: BackendRegistry = Depends(get_registry),
    policy: StoragePolicy = Depends(get_policy),
) -> SyncEngine:
    return SyncEngine(db, registry, policy, actor="api")


def get_migration_engine(
    db: Session = Depends(get_db),
    registry: BackendRegistry = Depends(get_registry),
    policy: StoragePolicy = Depends(get_policy),
) -> MigrationEngine:
    return MigrationEngine(db, registry, policy, actor="api")


def get_file_service(
    db: Session = Depends(get_db),
    registry: BackendRegistry = Depends(get_registry),
    policy: StoragePolicy = Depends(get_policy),
) -> FileService:
    return FileService(db, registry, policy)

"""
Tests for BackendRegistry resolution and caching.
"""
from unittest.mock import MagicMock

import pytest

from filestorage.models.backend_config import BackendConfig
from filestorage.models.file_record import FileRecord
from filestorage.services.policy import PlacementRule, StoragePolicy
from filestorage.services.registry import BackendRegistry
from filestorage.services.rules import FileInfo
from filestorage.storage.exceptions import ConfigNotFoundError, InvalidConfigError
from filestorage.storage.local import LocalStorageBackend
from tests.constants import S3_CONFIG


@pytest.fixture
def factory():
    return MagicMock(side_effect=lambda config: MagicMock(config=config))


@pytest.fixture
def fresh_registry(policy, factory):
    return BackendRegistry(policy, adapter_factories={"s3": factory})


def add_config(db, name, is_default=False, is_active=True, bucket="test-bucket"):
    config = BackendConfig(
        storage_type="s3",
        config_name=name,
        config_data={**S3_CONFIG, "bucket": bucket},
        is_active=is_active,
        is_default=is_default,
    )
    db.add(config)
    db.commit()
    return config


def test_local_backend_comes_from_policy(fresh_registry, policy):
    backend = fresh_registry.get_backend("local")

    assert isinstance(backend, LocalStorageBackend)
    assert str(backend.base_path) == policy.local_path
    assert fresh_registry.get_backend("local") is backend


def test_missing_config_raises(db, fresh_registry):
    with pytest.raises(ConfigNotFoundError) as exc_info:
        fresh_registry.get_backend("s3", db=db)

    assert exc_info.value.storage_type == "s3"


def test_inactive_config_is_ignored(db, fresh_registry):
    add_config(db, "archive", is_active=False)

    with pytest.raises(ConfigNotFoundError):
        fresh_registry.get_backend("s3", "archive", db=db)


def test_unsupported_type(db, fresh_registry):
    with pytest.raises(InvalidConfigError):
        fresh_registry.get_backend("ftp", db=db)


def test_default_config_preferred(db, fresh_registry, factory):
    add_config(db, "first", bucket="first-bucket")
    add_config(db, "main", is_default=True, bucket="main-bucket")

    backend = fresh_registry.get_backend("s3", db=db)

    assert backend.config["bucket"] == "main-bucket"
    assert fresh_registry.get_backend("s3", "first", db=db).config["bucket"] == "first-bucket"


def test_adapters_are_cached_until_invalidated(db, fresh_registry, factory):
    add_config(db, "main")

    first = fresh_registry.get_backend("s3", "main", db=db)
    assert fresh_registry.get_backend("s3", "main", db=db) is first
    assert factory.call_count == 1

    assert fresh_registry.invalidate("s3") == 1
    assert fresh_registry.get_backend("s3", "main", db=db) is not first
    assert factory.call_count == 2


def test_invalidate_by_name_drops_unnamed_entry(db, fresh_registry):
    add_config(db, "main", is_default=True)
    add_config(db, "other")
    fresh_registry.get_backend("s3", db=db)
    fresh_registry.get_backend("s3", "main", db=db)
    fresh_registry.get_backend("s3", "other", db=db)

    assert fresh_registry.invalidate("s3", "main") == 2
    assert fresh_registry.invalidate() == 1


def test_backend_for_record_uses_config_name(db, fresh_registry):
    add_config(db, "main", is_default=True, bucket="main-bucket")
    add_config(db, "archive", bucket="archive-bucket")
    record = FileRecord(backend_type="s3", backend_metadata={"config_name": "archive"})

    backend = fresh_registry.get_backend_for_record(record, db)

    assert backend.config["bucket"] == "archive-bucket"


def test_new_file_target_follows_placement_rules(tmp_path):
    policy = StoragePolicy(
        local_path=str(tmp_path),
        default_backend_type="gcs",
        default_backend_config="primary",
        placement_rules=(PlacementRule(backend="s3", config_name="images", mime_pattern="image/*"),),
    )
    registry = BackendRegistry(policy)

    assert registry.resolve_new_file_target(FileInfo(mime_type="image/png")) == ("s3", "images")
    assert registry.resolve_new_file_target(FileInfo(mime_type="text/plain")) == ("gcs", "primary")


def test_default_target_local_has_no_config(policy):
    assert BackendRegistry(policy).default_target() == ("local", None)

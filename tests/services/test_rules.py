"""
Tests for placement rules, visibility and source-deletion defaults.
"""
import pytest

from filestorage.config import Settings
from filestorage.models.file_record import FileRecord
from filestorage.services.policy import DeleteRule, PlacementRule, StoragePolicy, VisibilityRule
from filestorage.services.rules import (
    FileInfo,
    match_placement_rule,
    mime_matches,
    resolve_backend_type,
    resolve_visibility,
    rule_matches,
    should_delete_source,
)


@pytest.mark.parametrize(
    "pattern, mime_type, expected",
    [
        ("image/*", "image/png", True),
        ("image/*", "IMAGE/JPEG", True),
        ("image/*", "application/pdf", False),
        ("application/pdf", "application/pdf", True),
        ("application/pdf", "application/pdf+zip", False),
        ("*/pdf", "application/pdf", True),
        ("image/*", None, False),
        ("application/vnd.ms-excel", "application/vnd-ms-excel", False),
    ],
)
def test_mime_matches(pattern, mime_type, expected):
    assert mime_matches(pattern, mime_type) is expected


def test_rule_requires_every_criterion():
    rule = PlacementRule(backend="s3", mime_pattern="image/*", max_size=1000)

    assert rule_matches(rule, FileInfo(mime_type="image/png", size=500))
    assert not rule_matches(rule, FileInfo(mime_type="image/png", size=5000))
    assert not rule_matches(rule, FileInfo(mime_type="text/plain", size=500))


def test_unknown_size_counts_as_zero():
    assert rule_matches(PlacementRule(backend="s3", max_size=10), FileInfo())
    assert not rule_matches(PlacementRule(backend="s3", min_size=1), FileInfo())


def test_allowlist_never_matches_missing_attribute():
    by_entity = PlacementRule(backend="s3", entity_types=frozenset({"contact"}))
    by_type = PlacementRule(backend="s3", file_type_ids=frozenset({3}))

    assert rule_matches(by_entity, FileInfo(entity_type="contact"))
    assert not rule_matches(by_entity, FileInfo())
    assert rule_matches(by_type, FileInfo(file_type_id=3))
    assert not rule_matches(by_type, FileInfo(file_type_id=None))


def test_first_matching_rule_wins():
    rules = (
        PlacementRule(backend="gcs", mime_pattern="image/*", min_size=1000),
        PlacementRule(backend="s3", mime_pattern="image/*"),
    )

    assert match_placement_rule(rules, FileInfo(mime_type="image/png", size=2000)).backend == "gcs"
    assert match_placement_rule(rules, FileInfo(mime_type="image/png", size=10)).backend == "s3"
    assert match_placement_rule(rules, FileInfo(mime_type="text/plain")) is None


def test_legacy_record_resolves_to_local():
    assert resolve_backend_type(FileRecord(backend_type=None)) == "local"
    assert resolve_backend_type(FileRecord(backend_type="s3")) == "s3"


def test_visibility_precedence():
    policy = StoragePolicy(
        visibility_rules=(VisibilityRule(entity_type="contact", visibility="private"),),
        default_visibility="private",
    )

    # Explicit rule beats the public-by-default list
    assert resolve_visibility(policy, "contact") == "private"
    assert resolve_visibility(StoragePolicy(), "contact") == "public"
    assert resolve_visibility(policy, "activity") == "private"
    assert resolve_visibility(StoragePolicy(default_visibility="public"), None) == "public"


def test_should_delete_source():
    policy = StoragePolicy(
        delete_after_sync=True,
        delete_rules=(DeleteRule(source="local", target="gcs", delete=False),),
    )

    assert should_delete_source(policy, "local", "s3") is True
    assert should_delete_source(policy, "local", "gcs") is False
    # Never when source and target are the same backend
    assert should_delete_source(policy, "s3", "s3") is False
    assert should_delete_source(StoragePolicy(), "local", "s3") is False


def test_policy_from_settings():
    settings = Settings(
        DATABASE_URL="sqlite://",
        PLACEMENT_RULES=[{"mime_pattern": "image/*", "storage_type": "s3", "file_type_ids": ["2"]}],
        DELETE_RULES=[{"from": "local", "to": "s3", "delete": True}],
        MAX_UPLOAD_SIZE_MB=2,
    )

    policy = StoragePolicy.from_settings(settings)

    assert policy.placement_rules == (
        PlacementRule(backend="s3", mime_pattern="image/*", file_type_ids=frozenset({2})),
    )
    assert policy.delete_rules == (DeleteRule(source="local", target="s3", delete=True),)
    assert policy.max_upload_bytes == 2 * 1024 * 1024

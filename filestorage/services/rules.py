"""
Rule matching and default resolution.

Each defaulting concern has exactly one function here, so the precedence
order for backend type, visibility and source deletion lives in one place.
"""
import re
from dataclasses import dataclass
from functools import lru_cache

from filestorage.models.file_record import BackendType, FileRecord
from filestorage.services.policy import PlacementRule, StoragePolicy
from filestorage.storage.base import VISIBILITY_PUBLIC

# Entities whose files are public when no visibility rule says otherwise
PUBLIC_BY_DEFAULT_ENTITIES = frozenset({"contact"})


@dataclass
class FileInfo:
    """Attributes of a new file used for placement."""

    mime_type: str | None = None
    size: int | None = None
    entity_type: str | None = None
    file_type_id: int | None = None


@lru_cache(maxsize=256)
def _compile_mime_pattern(pattern: str) -> re.Pattern:
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(f"^{regex}$", re.IGNORECASE)


def mime_matches(pattern: str, mime_type: str | None) -> bool:
    """Anchored glob match of a MIME type, ``*`` matching any run of characters."""
    if not mime_type:
        return False
    return _compile_mime_pattern(pattern).match(mime_type) is not None


def rule_matches(rule: PlacementRule, info: FileInfo) -> bool:
    """
    Check a placement rule against a file.

    A rule with an allowlist (entity types or file types) never matches a
    file that lacks the corresponding attribute. An unknown size counts as 0.
    """
    if rule.mime_pattern and not mime_matches(rule.mime_pattern, info.mime_type):
        return False

    size = info.size or 0
    if rule.min_size is not None and size < rule.min_size:
        return False
    if rule.max_size is not None and size > rule.max_size:
        return False

    if rule.entity_types is not None and info.entity_type not in rule.entity_types:
        return False
    if rule.file_type_ids is not None and info.file_type_id not in rule.file_type_ids:
        return False

    return True


def match_placement_rule(rules: tuple[PlacementRule, ...], info: FileInfo) -> PlacementRule | None:
    """First matching rule, or None."""
    for rule in rules:
        if rule_matches(rule, info):
            return rule
    return None


def resolve_backend_type(record: FileRecord) -> str:
    """Backend holding a record's bytes; legacy rows without one are local."""
    return str(record.backend_type or BackendType.LOCAL)


def resolve_visibility(policy: StoragePolicy, entity_type: str | None) -> str:
    """
    Visibility for an object owned by ``entity_type``.

    Precedence: first matching visibility rule, then the public-by-default
    entity list, then the policy default.
    """
    for rule in policy.visibility_rules:
        if entity_type and rule.entity_type == entity_type:
            return rule.visibility

    if entity_type in PUBLIC_BY_DEFAULT_ENTITIES:
        return VISIBILITY_PUBLIC

    return policy.default_visibility


def should_delete_source(policy: StoragePolicy, source: str, target: str) -> bool:
    """
    Whether to delete the source object after a successful transfer.

    Never when source and target are the same backend; otherwise the first
    matching per-pair rule, then the global flag.
    """
    if source == target:
        return False

    for rule in policy.delete_rules:
        if rule.source == source and rule.target == target:
            return rule.delete

    return policy.delete_after_sync

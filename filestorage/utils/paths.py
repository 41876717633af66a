"""
Storage path generation and validation.

Every object written through a storage backend lives at a relative path of
the form ``{entity}/{YYYY}/{MM}/{DD}/{name}_{suffix}.{ext}``. This module
builds those paths and rejects anything that could escape a backend root.
"""
import hashlib
import re
import uuid
from datetime import datetime, timezone
from pathlib import PurePosixPath

from filestorage.storage.exceptions import PathSecurityError

MAX_FILENAME_LENGTH = 255
MAX_EXTENSION_LENGTH = 16
DEFAULT_EXTENSION = "bin"
DEFAULT_ENTITY_BUCKET = "files"

UNSAFE_CHARACTERS = (
    "/", "\\", ":", "*", "?", '"', "<", ">", "|", "\0",
    "{", "}", "[", "]", "`", "&", ";", "#", "%", "$",
)

_CONTROL_CHARACTERS = re.compile(r"[\x00-\x1f\x7f]")
_DOT_RUNS = re.compile(r"\.{2,}")
_DRIVE_LETTER = re.compile(r"^[A-Za-z]:[\\/]")
_EXTENSION_CHARACTERS = re.compile(r"[^a-z0-9]")

MIME_TO_EXTENSION = {
    # Documents
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "application/vnd.oasis.opendocument.text": "odt",
    "application/vnd.oasis.opendocument.spreadsheet": "ods",
    # Images
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "image/tiff": "tiff",
    # Archives
    "application/zip": "zip",
    "application/x-rar-compressed": "rar",
    "application/x-7z-compressed": "7z",
    "application/x-tar": "tar",
    "application/gzip": "gz",
    # Text
    "text/plain": "txt",
    "text/html": "html",
    "text/css": "css",
    "text/javascript": "js",
    "text/csv": "csv",
    "application/json": "json",
    "application/xml": "xml",
    # Media
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "video/mp4": "mp4",
    "video/mpeg": "mpeg",
    "video/quicktime": "mov",
    "video/x-msvideo": "avi",
}

EXTENSION_TO_MIME = {ext: mime for mime, ext in MIME_TO_EXTENSION.items()}
EXTENSION_TO_MIME["jpeg"] = "image/jpeg"
EXTENSION_TO_MIME["tif"] = "image/tiff"


def clean_filename(filename: str, replacement: str = "_") -> str:
    """
    Make a filename safe for every supported backend.

    Unsafe characters are replaced with ``replacement``, control characters
    are dropped, runs of dots and of the replacement character are collapsed,
    and both are trimmed from the ends. The function is idempotent.

    Args:
        filename: Raw filename (without directory components)
        replacement: Character used in place of unsafe characters

    Returns:
        Cleaned filename, or "file" if nothing usable remains
    """
    return _strip_unsafe(filename, replacement) or "file"


def _strip_unsafe(value: str, replacement: str) -> str:
    for char in UNSAFE_CHARACTERS:
        value = value.replace(char, replacement)

    value = _CONTROL_CHARACTERS.sub("", value)
    value = _DOT_RUNS.sub(".", value)
    if replacement:
        value = re.sub(re.escape(replacement) + "+", replacement, value)
    return value.strip(replacement + ".")


def normalize_entity_type(entity_type: str | None, prefix: str = "") -> str:
    """
    Turn an entity/table name into a path bucket.

    Example: ``civicrm_contact`` with prefix ``civicrm_`` becomes ``contact``.
    """
    normalized = (entity_type or "").lower()
    if prefix and normalized.startswith(prefix.lower()):
        normalized = normalized[len(prefix):]

    return _strip_unsafe(normalized, "-") or DEFAULT_ENTITY_BUCKET


def extension_for_mime(mime_type: str | None) -> str:
    """Return the canonical extension for a MIME type ("bin" if unknown)."""
    if not mime_type:
        return DEFAULT_EXTENSION
    return MIME_TO_EXTENSION.get(mime_type.lower(), DEFAULT_EXTENSION)


def mime_for_extension(extension: str) -> str:
    """Return the MIME type for an extension ("application/octet-stream" if unknown)."""
    return EXTENSION_TO_MIME.get(extension.lower().lstrip("."), "application/octet-stream")


def get_filename(path: str) -> str:
    """Return the last component of a path, accepting either separator."""
    return PurePosixPath(path.replace("\\", "/")).name


def unique_filename(
    original_filename: str,
    file_id: int | str | None = None,
    mime_type: str | None = None,
    seed: str | None = None,
) -> str:
    """
    Build a collision-resistant filename.

    Args:
        original_filename: Name the file was uploaded with
        file_id: Identifier of the file record, mixed into the suffix
        mime_type: Used to pick an extension when the name has none
        seed: Unique seed for the suffix (random when omitted)

    Returns:
        ``{clean_base}_{8 hex}.{ext}``
    """
    name = get_filename(original_filename)
    stem, dot, raw_extension = name.rpartition(".")
    if not dot or not stem:
        stem, raw_extension = name, ""

    extension = _EXTENSION_CHARACTERS.sub("", raw_extension.lower())[:MAX_EXTENSION_LENGTH]
    if not extension:
        extension = extension_for_mime(mime_type)

    base = clean_filename(stem)
    max_base_length = MAX_FILENAME_LENGTH - 10 - len(extension)
    if len(base) > max_base_length:
        base = base[:max_base_length].rstrip("_.") or "file"

    if seed is None:
        seed = uuid.uuid4().hex
    digest = hashlib.md5(
        f"{seed}{'' if file_id is None else file_id}{original_filename}".encode("utf-8")
    ).hexdigest()

    return f"{base}_{digest[:8]}.{extension}"


def generate_path(
    filename: str,
    entity_type: str | None = None,
    mime_type: str | None = None,
    timestamp: datetime | None = None,
    file_id: int | str | None = None,
    seed: str | None = None,
    entity_prefix: str = "",
) -> str:
    """
    Generate the relative storage path for a file.

    Args:
        filename: Original filename
        entity_type: Owning entity/table name (bucket defaults to "files")
        mime_type: MIME type, used when the filename has no extension
        timestamp: Upload time for the date components (default: now, UTC)
        file_id: File record identifier
        seed: Unique seed for the filename suffix
        entity_prefix: Framework prefix stripped from entity_type

    Returns:
        Relative path ``{entity}/{YYYY}/{MM}/{DD}/{unique filename}``
    """
    when = timestamp or datetime.now(timezone.utc)
    path = join(
        normalize_entity_type(entity_type, entity_prefix),
        f"{when:%Y}",
        f"{when:%m}",
        f"{when:%d}",
        unique_filename(filename, file_id, mime_type, seed),
    )
    validate_path(path)
    return path


def validate_path(path: str) -> str:
    """
    Reject paths that could escape a backend root.

    Args:
        path: Relative storage path

    Returns:
        The path unchanged, when it is safe

    Raises:
        PathSecurityError: On a ``..`` segment, an absolute path, a drive
            letter or an embedded null byte
    """
    if "\0" in path:
        raise PathSecurityError(path, "path contains null byte")

    if path.startswith(("/", "\\")) or _DRIVE_LETTER.match(path):
        raise PathSecurityError(path, "path must be relative")

    if ".." in path.replace("\\", "/").split("/"):
        raise PathSecurityError(path, "path contains directory traversal")

    return path


def join(*parts: str | None) -> str:
    """Join path parts with "/", dropping empty parts and duplicate slashes."""
    joined = "/".join(part for part in parts if part)
    return re.sub(r"/+", "/", joined).strip("/")


def parse_path(path: str) -> dict:
    """
    Split a generated path into its components.

    Paths that do not follow the generated layout only yield ``filename``.
    """
    parts = path.split("/")
    result = {
        "entity_type": None,
        "year": None,
        "month": None,
        "day": None,
        "filename": parts[-1] if parts else None,
    }
    if len(parts) == 5:
        result.update(
            entity_type=parts[0],
            year=parts[1],
            month=parts[2],
            day=parts[3],
        )
    return result


def format_file_size(size: int | float) -> str:
    """Format a byte count for humans, e.g. ``1.5 MB``."""
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(max(size, 0))
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"

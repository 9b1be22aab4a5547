"""
Storage key derivation and validation.

A storage key is a POSIX-style relative path such as
``2024/05/17/<entity-id>/report.pdf``. Keys are built from untrusted input
(the uploaded filename), so every segment is sanitized here and every key
handed back by a caller is validated before it touches the filesystem.
"""

import os
import re
import unicodedata
import uuid
from datetime import datetime
from pathlib import Path
from typing import Union

from docs_api.errors import InvalidStorageKeyError

DEFAULT_MAX_FILENAME_LENGTH = 200
FALLBACK_FILE_NAME = "file"

# Illegal in a path segment on at least one mainstream filesystem.
_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]+')
_ENTITY_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


def _truncate_utf8(text: str, max_bytes: int) -> str:
    """Cut ``text`` to at most ``max_bytes`` UTF-8 bytes without splitting a character."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def sanitize_file_name(file_name: str, max_length: int = DEFAULT_MAX_FILENAME_LENGTH) -> str:
    """
    Turn an untrusted filename into a single safe path segment.

    Runs of illegal characters are replaced by ``_``, surrounding whitespace and
    trailing dots are dropped, and the result is capped at ``max_length`` UTF-8
    bytes while keeping the extension. Names that sanitize to nothing fall back
    to ``"file"``.

    Args:
        file_name: The filename supplied by the client
        max_length: Upper bound for the encoded length of the result

    Returns:
        A non-empty name that is safe to use as the last segment of a key
    """
    name = unicodedata.normalize("NFC", file_name or "")
    name = "_".join(part for part in _ILLEGAL_CHARS.split(name) if part)
    name = name.strip().rstrip(". ")

    if not name.strip("."):
        return FALLBACK_FILE_NAME

    if len(name.encode("utf-8")) > max_length:
        stem, extension = os.path.splitext(name)
        extension_size = len(extension.encode("utf-8"))
        if extension and extension_size < max_length // 2:
            stem = _truncate_utf8(stem, max_length - extension_size).rstrip(". ")
            name = f"{stem}{extension}" if stem else FALLBACK_FILE_NAME + extension
        else:
            name = _truncate_utf8(name, max_length).rstrip(". ")

    return name or FALLBACK_FILE_NAME


def validate_entity_id(entity_id: Union[str, uuid.UUID]) -> str:
    """Return ``entity_id`` as a key segment, rejecting anything that is not a single safe token."""
    segment = str(entity_id)
    if not _ENTITY_ID.match(segment) or segment.strip(".") == "":
        raise InvalidStorageKeyError(segment, "entity id must be a single path segment")
    return segment


def build_storage_key(entity_id: Union[str, uuid.UUID], safe_file_name: str, when: datetime) -> str:
    """
    Compose the relative key ``YYYY/MM/DD/{entity_id}/{safe_file_name}``.

    The date partition bounds directory fan-out; the entity id keeps unrelated
    uploads with the same filename apart.
    """
    segment = validate_entity_id(entity_id)
    return "/".join(
        [
            f"{when.year:04d}",
            f"{when.month:02d}",
            f"{when.day:02d}",
            segment,
            safe_file_name,
        ]
    )


def split_key(key: str) -> list:
    """Split a key into its segments, rejecting absolute and traversal forms."""
    if not isinstance(key, str) or not key:
        raise InvalidStorageKeyError(str(key), "key must be a non-empty string")
    if "\x00" in key:
        raise InvalidStorageKeyError(key, "key contains a NUL byte")
    if key.startswith(("/", "\\")) or _DRIVE_PREFIX.match(key):
        raise InvalidStorageKeyError(key, "key must be relative")
    if "\\" in key:
        raise InvalidStorageKeyError(key, "key must use '/' separators")

    segments = key.split("/")
    for segment in segments:
        if segment in ("", ".", ".."):
            raise InvalidStorageKeyError(key, "key contains an empty or traversal segment")
    return segments


def resolve_key(root: Path, key: str) -> Path:
    """
    Map ``key`` to an absolute path strictly inside ``root``.

    ``root`` must already be resolved. Symlinks inside the tree are followed,
    so a link pointing outside the root is rejected as well.
    """
    segments = split_key(key)
    candidate = root.joinpath(*segments)
    resolved = candidate.resolve()
    if resolved == root or root not in resolved.parents:
        raise InvalidStorageKeyError(key, "key resolves outside the storage root")
    return candidate

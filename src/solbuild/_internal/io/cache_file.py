"""Read and atomically write the persisted build cache document."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from solbuild._internal.canonical_json import canonical_dumps
from solbuild.kernel.cache import CACHE_FORMAT, CACHE_SCHEMA_VERSION, CacheDocument
from solbuild.kernel.errors import CacheCorruptionError


def read_cache_document(path: Path) -> Optional[CacheDocument]:
    """Load the cache file.

    Returns:
        The parsed document, or None when the file does not exist.

    Raises:
        CacheCorruptionError: If the file is unreadable, not JSON, carries a
            different format/schema version, or does not match the schema.
    """
    if not path.exists():
        return None
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise CacheCorruptionError(str(path), f"cannot read: {e}") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CacheCorruptionError(str(path), f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CacheCorruptionError(str(path), "top level is not an object")

    found_format = data.get("format")
    if found_format != CACHE_FORMAT:
        raise CacheCorruptionError(str(path), f"unexpected format {found_format!r}")
    found_version = data.get("schema_version")
    if found_version != CACHE_SCHEMA_VERSION:
        raise CacheCorruptionError(
            str(path),
            f"schema_version {found_version!r} != {CACHE_SCHEMA_VERSION!r}",
        )
    try:
        return CacheDocument.model_validate(data)
    except ValidationError as e:
        raise CacheCorruptionError(str(path), f"schema validation failed: {e}") from e


def write_cache_document(path: Path, document: CacheDocument) -> None:
    """Write the cache via a temporary file in the same directory, then replace.

    A crash at any point leaves either the old file or the new one, never a
    partial write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = canonical_dumps(document.model_dump(mode="json"), newline=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

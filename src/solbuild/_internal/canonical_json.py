"""Byte-stable JSON for compiler requests, the cache file and CLI reports.

Two equal documents always serialize to the same bytes: keys are sorted,
separators are fixed, non-ASCII text is kept as UTF-8 and NaN/Infinity are
rejected because the compiler and other JSON readers cannot round-trip them.
"""

import json
from typing import Any


def canonical_dumps(obj: Any, newline: bool = False) -> str:
    """Serialize ``obj`` canonically.

    Lists are written in the order given; callers sort them first where order
    is not meaningful.

    Raises:
        ValueError: If ``obj`` contains NaN or an infinite float.
    """
    text = json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return text + "\n" if newline else text


def canonical_bytes(obj: Any) -> bytes:
    """UTF-8 encoded ``canonical_dumps``; what gets written to a compiler's stdin."""
    return canonical_dumps(obj).encode("utf-8")

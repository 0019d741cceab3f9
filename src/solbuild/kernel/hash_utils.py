"""Content hashes and job fingerprints.

A job fingerprint is the SHA256 of the canonical JSON document
``{"format", "version", "settings", "sources"}`` where ``sources`` is the list
of ``[source unit name, content hash]`` pairs sorted by name. Two jobs with the
same fingerprint are assumed to produce identical compiler output, so the
canonical form has to be exact:

- object keys sorted at every level
- arrays keep their order (remapping order is meaningful)
- strings normalized to NFC
- floats rejected; compiler settings only ever need ints
- anything that is not a JSON type rejected
"""

import hashlib
import json
import unicodedata
from typing import Any, Iterable, Tuple, Union


FINGERPRINT_FORMAT = "solbuild.fingerprint/1"


class CanonicalizationError(ValueError):
    """Raised when fingerprint input cannot be put in canonical form."""
    pass


def _canonical(obj: Any, path: str) -> Any:
    if obj is None or isinstance(obj, (bool, int)):
        return obj
    if isinstance(obj, float):
        raise CanonicalizationError(
            f"Floats are not allowed in fingerprinted data (at {path or '<root>'})"
        )
    if isinstance(obj, str):
        return unicodedata.normalize("NFC", obj)
    if isinstance(obj, dict):
        out = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"Dictionary keys must be strings at {path or '<root>'}, got {type(key).__name__}"
                )
            child = f"{path}.{key}" if path else key
            out[unicodedata.normalize("NFC", key)] = _canonical(value, child)
        return out
    if isinstance(obj, (list, tuple)):
        return [_canonical(item, f"{path}[{i}]") for i, item in enumerate(obj)]
    raise CanonicalizationError(f"Non-JSON type at {path or '<root>'}: {type(obj).__name__}")


def canonicalize_json(obj: Any) -> str:
    """Canonical JSON text for ``obj``.

    Raises:
        CanonicalizationError: On floats, non-string keys or non-JSON types.
    """
    return json.dumps(_canonical(obj, ""), sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def _sha256(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def hash_content(content: Union[str, bytes]) -> str:
    """``sha256:<hex>`` of raw source content; str is hashed as UTF-8."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return _sha256(content)


def compute_fingerprint(
    version: str,
    settings: dict,
    sources: Iterable[Tuple[str, str]],
) -> str:
    """Compute the cache key of one compilation job.

    Args:
        version: Resolved compiler version string (e.g. "0.8.10")
        settings: Compiler settings as they are sent to the compiler
        sources: (source unit name, content hash) pairs, in any order

    Raises:
        CanonicalizationError: On duplicate source names or non-canonical settings.
    """
    ordered = sorted((str(name), str(digest)) for name, digest in sources)
    names = [name for name, _ in ordered]
    if len(names) != len(set(names)):
        raise CanonicalizationError(f"Duplicate source names in fingerprint input: {names}")

    payload = {
        "format": FINGERPRINT_FORMAT,
        "version": version,
        "settings": settings or {},
        "sources": [[name, digest] for name, digest in ordered],
    }
    return _sha256(canonicalize_json(payload).encode("utf-8"))

"""Canonical serialization and content hashing.

The checksum of a page is SHA-256 over its canonical JSON: sorted keys,
compact separators, UTF-8. Timestamps and source paths are not part of the
IR, so identical authored content always hashes identically.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from pydantic import BaseModel


def canonical_json(data: Any) -> str:
    """Serialize ``data`` to canonical JSON.

    Args:
        data: JSON-compatible value or a pydantic model.

    Returns:
        JSON text with sorted keys and no insignificant whitespace.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(text: str | bytes) -> str:
    if isinstance(text, str):
        text = text.encode("utf-8")
    return hashlib.sha256(text).hexdigest()


def compute_checksum(data: Any) -> str:
    """Return the SHA-256 hex digest of the canonical JSON of ``data``.

    Example:
        >>> compute_checksum({"b": 1, "a": [1, 2]}) == compute_checksum({"a": [1, 2], "b": 1})
        True
    """
    return sha256_hex(canonical_json(data))

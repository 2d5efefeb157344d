# src/squeel/core/canonical.py
"""
Canonical JSON serialization for result fingerprinting.

Two-phase approach:
1. Normalize: Convert SQLite row values to JSON-safe primitives (our code)
2. Serialize: Produce deterministic JSON per RFC 8785/JCS (rfc8785 package)

Live queries compare fingerprints of consecutive results to decide whether
a re-run actually changed anything worth delivering.

IMPORTANT: NaN and Infinity are strictly REJECTED, not silently converted.
SQLite stores NaN as NULL, so they only appear in data produced by
validators; result_fingerprint() falls back to repr_hash() for those.
"""

from __future__ import annotations

import base64
import hashlib
import math
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

import rfc8785


def _normalize_value(obj: Any) -> Any:
    """Convert a single value to JSON-safe primitive.

    Raises:
        ValueError: If value is NaN or Infinity
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot canonicalize non-finite float: {obj}. Use None for missing values, not NaN.")
        return obj

    if obj is None or isinstance(obj, str | int | bool):
        return obj

    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=UTC)
        return obj.astimezone(UTC).isoformat()

    if isinstance(obj, date):
        return obj.isoformat()

    # BLOB columns arrive as bytes; memoryview from some drivers
    if isinstance(obj, bytes | bytearray | memoryview):
        return {"__bytes__": base64.b64encode(bytes(obj)).decode("ascii")}

    if isinstance(obj, Decimal):
        if not obj.is_finite():
            raise ValueError(f"Cannot canonicalize non-finite Decimal: {obj}. Use None for missing values, not NaN/Infinity.")
        return str(obj)

    return obj


def _normalize_for_canonical(data: Any) -> Any:
    """Recursively normalize a data structure for canonical JSON."""
    if isinstance(data, dict):
        return {k: _normalize_for_canonical(v) for k, v in data.items()}
    if isinstance(data, list | tuple):
        return [_normalize_for_canonical(v) for v in data]
    return _normalize_value(data)


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON for hashing.

    Returns:
        Canonical JSON string (no whitespace, sorted keys)

    Raises:
        ValueError: If data contains NaN, Infinity, or other non-finite values
        TypeError: If data contains types that cannot be serialized
    """
    normalized = _normalize_for_canonical(obj)
    result: bytes = rfc8785.dumps(normalized)
    return result.decode("utf-8")


def stable_hash(obj: Any) -> str:
    """Compute stable hash of object.

    Args:
        obj: Data structure to hash

    Returns:
        SHA-256 hex digest of canonical JSON
    """
    canonical = canonical_json(obj)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def repr_hash(obj: Any) -> str:
    """Generate SHA-256 hash of repr() for non-canonical data.

    Deterministic within one interpreter, which is all a fingerprint
    comparison between two consecutive results needs.
    """
    return hashlib.sha256(repr(obj).encode("utf-8")).hexdigest()


def result_fingerprint(data: Any) -> str:
    """Fingerprint a query result, tolerating non-canonical values.

    rfc8785 errors (e.g. integers beyond 2**53) subclass ValueError.
    """
    try:
        return stable_hash(data)
    except (TypeError, ValueError):
        return repr_hash(data)

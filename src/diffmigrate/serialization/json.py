"""
JSON serialization utilities for diffmigrate types.

This module provides JSON serialization for values that are not natively
JSON-serializable (UUIDs, datetimes, dates and Decimals), plus the
canonical serialization used for record content hashing.

Example:
    >>> from diffmigrate.serialization import json_dumps, canonical_dumps
    >>> from uuid import uuid4
    >>>
    >>> json_dumps({"id": uuid4()})
    >>> canonical_dumps({"b": 1, "a": 2})
    '{"a":2,"b":1}'
"""

import hashlib
import json
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

SUPPORTED_HASH_ALGORITHMS = ("md5", "sha1", "sha256")

# Columns that never take part in content comparison
CONTENT_HASH_EXCLUDED_FIELDS = frozenset(
    {"id", "created_at", "updated_at", "deleted_at", "legacy_id"}
)


class DiffMigrateJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles UUID, datetime, date and Decimal values.

    Example:
        >>> import json
        >>> from datetime import datetime, UTC
        >>> json.dumps({"at": datetime.now(UTC)}, cls=DiffMigrateJSONEncoder)
    """

    def default(self, obj: Any) -> Any:
        """
        Convert non-serializable objects to JSON-serializable formats.

        Args:
            obj: Object to serialize

        Returns:
            JSON-serializable representation

        Raises:
            TypeError: If object type is not supported
        """
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, date):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (set, frozenset)):
            return sorted(obj, key=str)
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """
    Serialize object to JSON string with UUID, datetime and Decimal support.

    Args:
        obj: Object to serialize

    Returns:
        JSON string representation
    """
    return json.dumps(obj, cls=DiffMigrateJSONEncoder)


def json_loads(s: str | bytes) -> Any:
    """
    Deserialize JSON string to Python object.

    UUID and datetime strings are not converted back to their original
    types; that is the caller's responsibility.

    Args:
        s: JSON string to deserialize

    Returns:
        Python object representation
    """
    return json.loads(s)


def _canonical_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, Mapping):
        return {str(k): _canonical_value(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_canonical_value(v) for v in value), key=str)
    if isinstance(value, (list, tuple)):
        return [_canonical_value(v) for v in value]
    return value


def canonical_dumps(data: Mapping[str, Any]) -> str:
    """
    Serialize a mapping into its canonical JSON form.

    The canonical form sorts keys at every nesting level, drops all
    insignificant whitespace and renders datetimes as ISO-8601 in UTC
    (naive datetimes are taken to be UTC already). Two rows that hold the
    same values therefore serialize identically regardless of column order
    or driver-specific value types.

    Args:
        data: Mapping to serialize

    Returns:
        Canonical JSON string
    """
    return json.dumps(
        _canonical_value(data),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def content_hash(
    row: Mapping[str, Any],
    algorithm: str = "sha256",
    exclude_fields: Iterable[str] = (),
) -> str:
    """
    Compute the stable content hash of a record.

    Args:
        row: Record field snapshot
        algorithm: One of md5, sha1, sha256
        exclude_fields: Additional fields left out of the comparison

    Returns:
        Hash in the form ``"{algorithm}_{first 16 hex chars}"``

    Raises:
        ValueError: If the algorithm is not supported
    """
    if algorithm not in SUPPORTED_HASH_ALGORITHMS:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    excluded = CONTENT_HASH_EXCLUDED_FIELDS | set(exclude_fields)
    payload = {k: v for k, v in row.items() if k not in excluded}
    digest = hashlib.new(algorithm, canonical_dumps(payload).encode("utf-8"))
    return f"{algorithm}_{digest.hexdigest()[:16]}"


__all__ = [
    "CONTENT_HASH_EXCLUDED_FIELDS",
    "DiffMigrateJSONEncoder",
    "SUPPORTED_HASH_ALGORITHMS",
    "canonical_dumps",
    "content_hash",
    "json_dumps",
    "json_loads",
]

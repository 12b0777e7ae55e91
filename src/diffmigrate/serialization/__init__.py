"""
Serialization utilities for diffmigrate.

Provides JSON serialization with support for UUIDs, datetimes and
Decimals, and the canonical serialization that record content hashes
are computed over.

Example:
    >>> from diffmigrate.serialization import content_hash
    >>> content_hash({"id": 1, "name": "Main Office"})
    'sha256_...'
"""

from diffmigrate.serialization.json import (
    CONTENT_HASH_EXCLUDED_FIELDS,
    SUPPORTED_HASH_ALGORITHMS,
    DiffMigrateJSONEncoder,
    canonical_dumps,
    content_hash,
    json_dumps,
    json_loads,
)

__all__ = [
    "CONTENT_HASH_EXCLUDED_FIELDS",
    "DiffMigrateJSONEncoder",
    "SUPPORTED_HASH_ALGORITHMS",
    "canonical_dumps",
    "content_hash",
    "json_dumps",
    "json_loads",
]

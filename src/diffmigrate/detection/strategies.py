"""
Detection strategies and their persisted cursors.

A detection pass is driven by exactly one strategy variant:

- TimestampStrategy: rows modified strictly after `since`
- IdStrategy: rows whose primary key is greater than `last_processed_id`
- ChecksumStrategy: every row, compared against a stored hash map

Each variant carries only the cursor state it needs. Between runs the
cursor is stored as a plain dictionary inside checkpoint data; the
pydantic cursor models validate that payload when it is read back.

Example:
    >>> strategy = TimestampStrategy(since=last_run)
    >>> data = strategy_to_cursor(strategy)
    >>> strategy_from_cursor(data) == strategy
    True
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from diffmigrate.exceptions import ConfigurationError


@dataclass(frozen=True)
class TimestampStrategy:
    """
    Detect rows whose modification timestamp is strictly after `since`.

    A None cursor scans every row with a timestamp.
    """

    kind: ClassVar[str] = "timestamp"

    since: datetime | None = None


@dataclass(frozen=True)
class IdStrategy:
    """
    Detect rows whose primary key is greater than `last_processed_id`.

    Rows at or below the cursor are only revisited when content hashing
    is enabled, to find modifications.
    """

    kind: ClassVar[str] = "id"

    last_processed_id: int | str | None = None


@dataclass(frozen=True)
class ChecksumStrategy:
    """
    Hash every source row and compare against the hashes of the last run.

    Attributes:
        hashes: Record id -> content hash recorded by the previous pass.
    """

    kind: ClassVar[str] = "checksum"

    hashes: Mapping[str, str] = field(default_factory=dict)


DetectionStrategy = TimestampStrategy | IdStrategy | ChecksumStrategy


class TimestampCursor(BaseModel):
    """Persisted cursor of a timestamp pass."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["timestamp"] = "timestamp"
    since: datetime | None = None


class IdCursor(BaseModel):
    """Persisted cursor of an id pass."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["id"] = "id"
    last_processed_id: int | str | None = None


class ChecksumCursor(BaseModel):
    """Persisted cursor of a checksum pass."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["checksum"] = "checksum"
    hashes: dict[str, str] = Field(default_factory=dict)


DetectionCursor = Annotated[
    TimestampCursor | IdCursor | ChecksumCursor,
    Field(discriminator="kind"),
]

_cursor_adapter: TypeAdapter[TimestampCursor | IdCursor | ChecksumCursor] = TypeAdapter(
    DetectionCursor
)


def strategy_to_cursor(strategy: DetectionStrategy) -> dict[str, Any]:
    """
    Serialize a strategy into a JSON-compatible cursor payload.

    Args:
        strategy: Strategy variant to store

    Returns:
        Dictionary suitable for checkpoint data
    """
    cursor: BaseModel
    match strategy:
        case TimestampStrategy(since=since):
            cursor = TimestampCursor(since=since)
        case IdStrategy(last_processed_id=last_id):
            cursor = IdCursor(last_processed_id=last_id)
        case ChecksumStrategy(hashes=hashes):
            cursor = ChecksumCursor(hashes=dict(hashes))
        case _:
            raise ConfigurationError(f"Unknown detection strategy: {strategy!r}")
    return cursor.model_dump(mode="json")


def strategy_from_cursor(data: Mapping[str, Any]) -> DetectionStrategy:
    """
    Rebuild a strategy from a stored cursor payload.

    Args:
        data: Payload produced by strategy_to_cursor

    Returns:
        The matching strategy variant

    Raises:
        ConfigurationError: If the payload does not match any cursor schema.
    """
    try:
        cursor = _cursor_adapter.validate_python(dict(data))
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid detection cursor",
            [err["msg"] for err in e.errors()],
        ) from e

    if isinstance(cursor, TimestampCursor):
        return TimestampStrategy(since=cursor.since)
    if isinstance(cursor, IdCursor):
        return IdStrategy(last_processed_id=cursor.last_processed_id)
    return ChecksumStrategy(hashes=dict(cursor.hashes))


__all__ = [
    "ChecksumCursor",
    "ChecksumStrategy",
    "DetectionCursor",
    "DetectionStrategy",
    "IdCursor",
    "IdStrategy",
    "TimestampCursor",
    "TimestampStrategy",
    "strategy_from_cursor",
    "strategy_to_cursor",
]

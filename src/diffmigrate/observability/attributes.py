"""
Standard span attributes for diffmigrate.

Attribute constants shared by every component so spans are labelled
consistently. Database attributes follow OpenTelemetry semantic
conventions.

Example:
    >>> from diffmigrate.observability.attributes import ATTR_ENTITY_TYPE
    >>>
    >>> with tracer.span(
    ...     "diffmigrate.detector.detect_changes",
    ...     {ATTR_ENTITY_TYPE: "doctors"},
    ... ):
    ...     pass
"""

# =============================================================================
# Entity and Run Attributes
# =============================================================================

ATTR_ENTITY_TYPE = "diffmigrate.entity.type"
"""Entity type being processed (e.g., 'offices', 'patients')."""

ATTR_ENTITY_COUNT = "diffmigrate.entity.count"
"""Number of entity types taking part in an operation (integer)."""

ATTR_RUN_ID = "diffmigrate.run.id"
"""Identifier of the migration run (string)."""

ATTR_SESSION_ID = "diffmigrate.session.id"
"""Identifier of the analysis or tracking session (string)."""

# =============================================================================
# Batch Attributes
# =============================================================================

ATTR_BATCH_NUMBER = "diffmigrate.batch.number"
"""Sequence number of the batch within an entity run (integer)."""

ATTR_BATCH_SIZE = "diffmigrate.batch.size"
"""Number of records in the batch (integer)."""

ATTR_RECORD_COUNT = "diffmigrate.record.count"
"""Number of records touched by an operation (integer)."""

ATTR_RETRY_COUNT = "diffmigrate.retry.count"
"""Number of retries performed (integer)."""

# =============================================================================
# Detection and Resolution Attributes
# =============================================================================

ATTR_DETECTION_STRATEGY = "diffmigrate.detection.strategy"
"""Detection strategy in use: timestamp, id or checksum."""

ATTR_CHANGE_COUNT = "diffmigrate.detection.change_count"
"""Number of changes detected (integer)."""

ATTR_RESOLUTION_STRATEGY = "diffmigrate.resolution.strategy"
"""Conflict resolution strategy: source_wins, target_wins or manual."""

ATTR_DIFFERENTIAL_ID = "diffmigrate.differential.id"
"""Identifier of a DataDifferential audit row (string)."""

ATTR_CHECKPOINT_ID = "diffmigrate.checkpoint.id"
"""Identifier of a checkpoint (string)."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system (e.g., 'postgresql', 'sqlite')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation (e.g., 'SELECT', 'INSERT')."""

ATTR_DB_TABLE = "db.sql.table"
"""Table the operation targets."""

__all__ = [
    "ATTR_BATCH_NUMBER",
    "ATTR_BATCH_SIZE",
    "ATTR_CHANGE_COUNT",
    "ATTR_CHECKPOINT_ID",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_TABLE",
    "ATTR_DETECTION_STRATEGY",
    "ATTR_DIFFERENTIAL_ID",
    "ATTR_ENTITY_COUNT",
    "ATTR_ENTITY_TYPE",
    "ATTR_RECORD_COUNT",
    "ATTR_RESOLUTION_STRATEGY",
    "ATTR_RETRY_COUNT",
    "ATTR_RUN_ID",
    "ATTR_SESSION_ID",
]

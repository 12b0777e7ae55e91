"""
Change detection between source and destination.

- **Strategies**: timestamp, id and checksum cursors (tagged variants)
- **Detector**: classifies records as new, modified or deleted
"""

from diffmigrate.detection.detector import (
    CONFIDENCE_DELETED,
    CONFIDENCE_MODIFIED_HASHED,
    CONFIDENCE_MODIFIED_TIMESTAMP,
    CONFIDENCE_NEW,
    DetectionOptions,
    DetectionPerformance,
    DetectionResult,
    DetectionStatus,
    DetectionSummary,
    DifferentialDetector,
    TimestampValidation,
)
from diffmigrate.detection.strategies import (
    ChecksumCursor,
    ChecksumStrategy,
    DetectionCursor,
    DetectionStrategy,
    IdCursor,
    IdStrategy,
    TimestampCursor,
    TimestampStrategy,
    strategy_from_cursor,
    strategy_to_cursor,
)

__all__ = [
    # Detector
    "DifferentialDetector",
    "DetectionOptions",
    "DetectionResult",
    "DetectionStatus",
    "DetectionSummary",
    "DetectionPerformance",
    "TimestampValidation",
    "CONFIDENCE_NEW",
    "CONFIDENCE_MODIFIED_HASHED",
    "CONFIDENCE_MODIFIED_TIMESTAMP",
    "CONFIDENCE_DELETED",
    # Strategies
    "DetectionStrategy",
    "TimestampStrategy",
    "IdStrategy",
    "ChecksumStrategy",
    "DetectionCursor",
    "TimestampCursor",
    "IdCursor",
    "ChecksumCursor",
    "strategy_to_cursor",
    "strategy_from_cursor",
]

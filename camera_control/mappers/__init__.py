"""
Pure mappings from raw model output to control-facing values.

- speed: anger score -> game speed multiplier
- confidence: gesture confidence -> tracking status and ring intensity
"""

from camera_control.mappers.confidence import (
    ConfidenceStatus,
    confidence_status,
    normalized_confidence,
)
from camera_control.mappers.speed import (
    DEFAULT_ANGER_THRESHOLD,
    MAX_SPEED_MULTIPLIER,
    MIN_SPEED_MULTIPLIER,
    is_angry,
    speed_multiplier,
)

__all__ = [
    "ConfidenceStatus",
    "confidence_status",
    "normalized_confidence",
    "DEFAULT_ANGER_THRESHOLD",
    "MAX_SPEED_MULTIPLIER",
    "MIN_SPEED_MULTIPLIER",
    "is_angry",
    "speed_multiplier",
]

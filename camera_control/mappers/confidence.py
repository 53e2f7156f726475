"""
Gesture confidence gating.

The inference loop only reports raw confidences; whether a prediction is
actionable is decided here against a user-adjustable threshold.
"""

from enum import Enum

# Bounds of the user-adjustable confidence threshold
MIN_CONFIDENCE_THRESHOLD = 0.5
MAX_CONFIDENCE_THRESHOLD = 0.95

# Smallest threshold used as a divisor in normalized_confidence
_THRESHOLD_FLOOR = 0.001


class ConfidenceStatus(Enum):
    """Tracking status shown next to the predicted direction."""

    IDLE = "idle"           # Gesture loop off
    SCANNING = "scanning"   # Loop on, confidence below threshold
    TRACKING = "tracking"   # Confidence at or above threshold


def confidence_status(active: bool, confidence: float, threshold: float) -> ConfidenceStatus:
    """
    Classify a gesture prediction.

    Args:
        active: Whether the gesture loop is running.
        confidence: Confidence of the latest prediction in [0, 1].
        threshold: Confidence needed to act on a prediction.

    Returns:
        IDLE when inactive, TRACKING when confidence >= threshold,
        SCANNING otherwise.
    """
    if not active:
        return ConfidenceStatus.IDLE
    if confidence >= threshold:
        return ConfidenceStatus.TRACKING
    return ConfidenceStatus.SCANNING


def normalized_confidence(confidence: float, threshold: float) -> float:
    """
    Confidence relative to the threshold, clamped to [0, 1].

    This is the ratio the camera ring overlay interpolates its colour,
    opacity and geometry from; 1.0 means the threshold is reached.
    """
    ratio = confidence / max(threshold, _THRESHOLD_FLOOR)
    return min(max(ratio, 0.0), 1.0)

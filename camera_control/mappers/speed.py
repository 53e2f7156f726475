"""
Anger score to game speed mapping.

Below the threshold the game runs at normal speed. Above it the speed
grows linearly, reaching MAX_SPEED_MULTIPLIER at an anger score of 1.0:

    multiplier = 1 + 2 * clamp((anger - threshold) / (1 - threshold), 0, 1)
"""

from typing import Optional

DEFAULT_ANGER_THRESHOLD = 0.7
MIN_SPEED_MULTIPLIER = 1.0
MAX_SPEED_MULTIPLIER = 3.0


def _check_threshold(threshold: float) -> None:
    if not (0.0 <= threshold < 1.0):
        raise ValueError(f"threshold must be in range [0, 1), got {threshold}")


def speed_multiplier(
    anger_score: Optional[float],
    threshold: float = DEFAULT_ANGER_THRESHOLD,
) -> float:
    """
    Compute the game speed multiplier for an anger score.

    Args:
        anger_score: Anger probability in [0, 1], or None when no face
            was detected.
        threshold: Minimum anger score that speeds the game up.

    Returns:
        Multiplier in [1.0, 3.0]. Exactly 1.0 at or below the threshold
        and exactly 3.0 at an anger score of 1.0.

    Raises:
        ValueError: If threshold is not in [0, 1).
    """
    _check_threshold(threshold)

    # Also covers NaN scores, which compare False
    if anger_score is None or not anger_score >= threshold:
        return MIN_SPEED_MULTIPLIER

    normalized = (anger_score - threshold) / (1.0 - threshold)
    normalized = min(max(normalized, 0.0), 1.0)

    return MIN_SPEED_MULTIPLIER + normalized * (MAX_SPEED_MULTIPLIER - MIN_SPEED_MULTIPLIER)


def is_angry(
    anger_score: Optional[float],
    threshold: float = DEFAULT_ANGER_THRESHOLD,
) -> bool:
    """True when the anger score reaches the threshold."""
    _check_threshold(threshold)
    return anger_score is not None and anger_score >= threshold

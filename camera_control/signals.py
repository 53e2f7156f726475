"""
Signal types produced by the inference loops.

ExpressionScores and DirectionPrediction are the raw model results;
ExpressionSignal is what the expression loop publishes to the sink.
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

import numpy as np


# Closed set of expression labels, in canonical order
EXPRESSION_LABELS: Tuple[str, ...] = (
    "angry",
    "disgusted",
    "fearful",
    "happy",
    "neutral",
    "sad",
    "surprised",
)

# Directions the gesture classifier can be trained on
DIRECTIONS: Tuple[str, ...] = ("up", "down", "left", "right")


def _check_probability(name: str, value: float) -> None:
    if not (0.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in range [0, 1], got {value}")


@dataclass(frozen=True)
class ExpressionScores:
    """表情概率 (Expression probabilities)

    One probability estimate per label of EXPRESSION_LABELS. The values are
    not required to sum to exactly 1; that depends on the model.
    """

    angry: float = 0.0
    disgusted: float = 0.0
    fearful: float = 0.0
    happy: float = 0.0
    neutral: float = 0.0
    sad: float = 0.0
    surprised: float = 0.0

    def __post_init__(self):
        for label in EXPRESSION_LABELS:
            _check_probability(label, getattr(self, label))

    @property
    def anger(self) -> float:
        """Score of the 'angry' label."""
        return self.angry

    @property
    def dominant(self) -> str:
        """Label with the highest score (first label wins ties)."""
        return max(EXPRESSION_LABELS, key=lambda label: getattr(self, label))

    def to_dict(self) -> Dict[str, float]:
        return {label: getattr(self, label) for label in EXPRESSION_LABELS}

    def to_array(self) -> np.ndarray:
        """Scores as a float32 array in EXPRESSION_LABELS order."""
        return np.array(
            [getattr(self, label) for label in EXPRESSION_LABELS],
            dtype=np.float32,
        )

    @classmethod
    def from_mapping(cls, scores: Mapping[str, float]) -> "ExpressionScores":
        """
        Build scores from a label -> probability mapping.

        Labels missing from the mapping default to 0.

        Raises:
            ValueError: If the mapping contains a label outside
                EXPRESSION_LABELS or a value outside [0, 1].
        """
        unknown = set(scores) - set(EXPRESSION_LABELS)
        if unknown:
            raise ValueError(f"Unknown expression labels: {sorted(unknown)}")
        return cls(**{label: float(value) for label, value in scores.items()})


@dataclass(frozen=True)
class ExpressionSignal:
    """Expression state published to the control sink.

    Attributes:
        expression: Scores of the last detected face, None before the first
            detection.
        anger_score: The 'angry' score, 0 when nothing was detected yet.
        speed_multiplier: Game speed multiplier in [1.0, 3.0].
        is_model_loaded: Whether the expression model is ready.
        is_angry_detected: Whether anger_score reached the anger threshold.
    """

    expression: Optional[ExpressionScores] = None
    anger_score: float = 0.0
    speed_multiplier: float = 1.0
    is_model_loaded: bool = False
    is_angry_detected: bool = False


@dataclass(frozen=True)
class DirectionPrediction:
    """Direction predicted by the gesture classifier.

    A None label with confidence 0 means "no confident prediction".
    """

    label: Optional[str] = None
    confidence: float = 0.0
    scores: Dict[str, float] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        _check_probability("confidence", self.confidence)
        if self.label is None and self.confidence != 0.0:
            raise ValueError("A prediction without label must have confidence 0")

    @classmethod
    def none(cls) -> "DirectionPrediction":
        """The null prediction."""
        return cls(label=None, confidence=0.0)

    @property
    def is_none(self) -> bool:
        return self.label is None

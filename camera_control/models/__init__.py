"""
Model wrappers used by the inference loops.

- ExpressionRecognizer: face detector + expression classifier
- FeatureExtractor: generic image embedding network
- DirectionClassifier: embedding -> direction
"""

from camera_control.models.expression import ExpressionRecognizer, FERPLUS_LABELS
from camera_control.models.gesture import DirectionClassifier, FeatureExtractor

__all__ = [
    "ExpressionRecognizer",
    "FERPLUS_LABELS",
    "DirectionClassifier",
    "FeatureExtractor",
]

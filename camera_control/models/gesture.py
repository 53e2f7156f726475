"""
Two-stage gesture model: a generic image feature extractor followed by a
small classifier trained on user-labelled examples.

Both stages are ONNX models. The extractor is a truncated (or complete)
MobileNet-style network whose output is used as an embedding; the
classifier maps that embedding to one probability per direction.
"""

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import cv2
import numpy as np

from ..errors import InferenceError
from ..signals import DIRECTIONS, DirectionPrediction
from .session import as_distribution, create_session, input_layout

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_SIZE = 224

# Per-channel RGB statistics used by ImageNet-trained ONNX models
IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)

NORMALIZATIONS = ("imagenet", "mobilenet")


class FeatureExtractor:
    """Image -> embedding.

    Normalization modes:
        imagenet: scale to [0, 1], then subtract mean / divide by std
        mobilenet: scale to [-1, 1]
    """

    def __init__(self, session, normalization: str = "imagenet"):
        if normalization not in NORMALIZATIONS:
            raise ValueError(
                f"normalization must be one of {NORMALIZATIONS}, got {normalization!r}"
            )

        self._session = session
        self.normalization = normalization
        (self._input_name, self._channels_first, _,
         height, width) = input_layout(session)
        self._input_size = (
            width if width > 0 else DEFAULT_IMAGE_SIZE,
            height if height > 0 else DEFAULT_IMAGE_SIZE,
        )

    @classmethod
    def from_file(
        cls,
        model_path: Union[str, Path],
        normalization: str = "imagenet",
        device: str = "cpu",
    ) -> "FeatureExtractor":
        return cls(create_session(model_path, device), normalization=normalization)

    def extract(self, frame: np.ndarray) -> np.ndarray:
        """
        Compute the embedding of a frame.

        Args:
            frame: BGR video frame (H, W, 3)

        Returns:
            1-d float32 feature vector

        Raises:
            InferenceError: If the frame is empty or the output is empty
        """
        if frame is None or frame.size == 0:
            raise InferenceError("Cannot extract features from an empty frame")

        image = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        image = cv2.resize(image, self._input_size, interpolation=cv2.INTER_AREA)
        image = image.astype(np.float32) / 255.0

        if self.normalization == "imagenet":
            image = (image - IMAGENET_MEAN) / IMAGENET_STD
        else:
            image = image * 2.0 - 1.0

        if self._channels_first:
            image = np.transpose(image, (2, 0, 1))

        outputs = self._session.run(None, {self._input_name: image[np.newaxis, ...]})
        features = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if features.size == 0:
            raise InferenceError("Feature extractor returned an empty embedding")
        return features


class DirectionClassifier:
    """方向分类器 (Direction classifier)

    Maps an embedding to the most likely direction and its probability.
    """

    def __init__(
        self,
        session,
        labels: Sequence[str] = DIRECTIONS,
        output_logits: Optional[bool] = None,
    ):
        """
        Args:
            session: ONNX Runtime session taking a (1, D) embedding.
            labels: Direction of each classifier output, in order.
            output_logits: Whether the classifier emits logits. None guesses
                from the output range.
        """
        unknown = set(labels) - set(DIRECTIONS)
        if not labels or unknown:
            raise ValueError(
                f"labels must be a non-empty subset of {DIRECTIONS}, got {list(labels)}"
            )

        self._session = session
        self.labels = tuple(labels)
        self.output_logits = output_logits
        self._input_name = session.get_inputs()[0].name

    @classmethod
    def from_file(
        cls,
        model_path: Union[str, Path],
        labels: Sequence[str] = DIRECTIONS,
        device: str = "cpu",
        output_logits: Optional[bool] = None,
    ) -> "DirectionClassifier":
        return cls(create_session(model_path, device), labels=labels,
                   output_logits=output_logits)

    def classify(self, features: np.ndarray) -> DirectionPrediction:
        """
        Predict a direction from an embedding.

        Returns:
            DirectionPrediction with the arg-max label; confidence is that
            label's probability.

        Raises:
            InferenceError: If the output size doesn't match labels
        """
        x = np.asarray(features, dtype=np.float32).reshape(1, -1)
        outputs = self._session.run(None, {self._input_name: x})

        try:
            probs = as_distribution(outputs[0], logits=self.output_logits)
        except ValueError as e:
            raise InferenceError(f"Invalid classifier output: {e}") from e

        if probs.size != len(self.labels):
            raise InferenceError(
                f"Expected {len(self.labels)} classifier outputs, got {probs.size}"
            )

        best = int(np.argmax(probs))
        scores = {
            label: float(np.clip(p, 0.0, 1.0))
            for label, p in zip(self.labels, probs)
        }
        return DirectionPrediction(
            label=self.labels[best],
            confidence=scores[self.labels[best]],
            scores=scores,
        )

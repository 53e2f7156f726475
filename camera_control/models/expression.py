"""
Facial expression recognizer.

Two networks behind one handle: a MediaPipe face detector finds the most
confident face, and an ONNX expression classifier scores the face crop.
The default output order matches the FER+ emotion model; labels outside
the closed expression set (FER+ has 'contempt') are dropped.
"""

import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import cv2
import numpy as np

try:
    import mediapipe as mp
    from mediapipe.tasks import python
    from mediapipe.tasks.python import vision

    MEDIAPIPE_AVAILABLE = True
except ImportError:
    MEDIAPIPE_AVAILABLE = False

from ..errors import InferenceError
from ..signals import EXPRESSION_LABELS, ExpressionScores
from .session import as_distribution, create_session, input_layout

logger = logging.getLogger(__name__)

# Output order of the FER+ emotion model
FERPLUS_LABELS: Tuple[str, ...] = (
    "neutral", "happy", "surprised", "sad",
    "angry", "disgusted", "fearful", "contempt",
)

# Classifier input size used when the model declares dynamic dimensions
DEFAULT_FACE_SIZE = 64


class ExpressionRecognizer:
    """人脸表情识别 (Face expression recognizer)

    predict() returns ExpressionScores for the most confident face in a
    frame, or None when no face is found.
    """

    def __init__(
        self,
        detector,
        session,
        output_labels: Sequence[str] = FERPLUS_LABELS,
        pixel_scale: float = 1.0,
        face_margin: float = 0.1,
        output_logits: Optional[bool] = None,
    ):
        """
        Args:
            detector: MediaPipe FaceDetector (anything with detect(mp.Image)).
            session: ONNX Runtime session of the expression classifier.
            output_labels: Label of each classifier output, in order.
            pixel_scale: Factor applied to raw 0-255 pixel values.
            face_margin: Fraction of the face box added on every side.
            output_logits: Whether the classifier emits logits. None guesses
                from the output range.
        """
        if not set(EXPRESSION_LABELS) <= set(output_labels):
            missing = sorted(set(EXPRESSION_LABELS) - set(output_labels))
            raise ValueError(f"output_labels is missing expression labels: {missing}")
        if face_margin < 0:
            raise ValueError(f"face_margin must be >= 0, got {face_margin}")

        self._detector = detector
        self._session = session
        self.output_labels = tuple(output_labels)
        self.pixel_scale = pixel_scale
        self.face_margin = face_margin
        self.output_logits = output_logits

        (self._input_name, self._channels_first, channels,
         height, width) = input_layout(session)
        self._grayscale = channels == 1
        self._input_size = (
            width if width > 0 else DEFAULT_FACE_SIZE,
            height if height > 0 else DEFAULT_FACE_SIZE,
        )

    @classmethod
    def from_files(
        cls,
        detector_path: Union[str, Path],
        model_path: Union[str, Path],
        min_detection_confidence: float = 0.5,
        output_labels: Sequence[str] = FERPLUS_LABELS,
        pixel_scale: float = 1.0,
        device: str = "cpu",
        output_logits: Optional[bool] = None,
    ) -> "ExpressionRecognizer":
        """
        Load the face detector task file and the expression ONNX model.

        Raises:
            ImportError: If mediapipe or onnxruntime is not installed
            FileNotFoundError: If a model file doesn't exist
        """
        if not MEDIAPIPE_AVAILABLE:
            raise ImportError(
                "MediaPipe is not installed. Install with: pip install mediapipe"
            )
        if not Path(detector_path).exists():
            raise FileNotFoundError(f"Face detector not found: {detector_path}")

        options = vision.FaceDetectorOptions(
            base_options=python.BaseOptions(model_asset_path=str(detector_path)),
            min_detection_confidence=min_detection_confidence,
        )
        detector = vision.FaceDetector.create_from_options(options)
        session = create_session(model_path, device)

        return cls(detector, session, output_labels=output_labels,
                   pixel_scale=pixel_scale, output_logits=output_logits)

    def detect_face(self, frame: np.ndarray) -> Optional[Tuple[int, int, int, int]]:
        """
        Locate the most confident face.

        Args:
            frame: BGR video frame (H, W, 3)

        Returns:
            (x0, y0, x1, y1) pixel box clipped to the frame, or None
        """
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)
        result = self._detector.detect(mp_image)

        if not result.detections:
            return None

        best = max(
            result.detections,
            key=lambda d: d.categories[0].score if d.categories else 0.0,
        )
        box = best.bounding_box

        h, w = frame.shape[:2]
        dx = int(box.width * self.face_margin)
        dy = int(box.height * self.face_margin)
        x0 = max(0, int(box.origin_x) - dx)
        y0 = max(0, int(box.origin_y) - dy)
        x1 = min(w, int(box.origin_x + box.width) + dx)
        y1 = min(h, int(box.origin_y + box.height) + dy)

        if x1 <= x0 or y1 <= y0:
            return None
        return x0, y0, x1, y1

    def predict(self, frame: np.ndarray) -> Optional[ExpressionScores]:
        """
        Score the expression of the most confident face.

        Args:
            frame: BGR video frame (H, W, 3)

        Returns:
            ExpressionScores, or None if no face is detected

        Raises:
            InferenceError: If the classifier output doesn't match
                output_labels
        """
        if frame is None or frame.size == 0:
            return None

        box = self.detect_face(frame)
        if box is None:
            return None

        x0, y0, x1, y1 = box
        tensor = self._preprocess(np.ascontiguousarray(frame[y0:y1, x0:x1]))
        outputs = self._session.run(None, {self._input_name: tensor})
        return self._to_scores(outputs[0])

    def _preprocess(self, face: np.ndarray) -> np.ndarray:
        if self._grayscale:
            image = cv2.cvtColor(face, cv2.COLOR_BGR2GRAY)
        else:
            image = cv2.cvtColor(face, cv2.COLOR_BGR2RGB)
        image = cv2.resize(image, self._input_size, interpolation=cv2.INTER_AREA)

        image = image.astype(np.float32) * self.pixel_scale
        if image.ndim == 2:
            image = image[:, :, np.newaxis]
        if self._channels_first:
            image = np.transpose(image, (2, 0, 1))
        return image[np.newaxis, ...]

    def _to_scores(self, raw: np.ndarray) -> ExpressionScores:
        try:
            probs = as_distribution(raw, logits=self.output_logits)
        except ValueError as e:
            raise InferenceError(f"Invalid expression output: {e}") from e

        if probs.size != len(self.output_labels):
            raise InferenceError(
                f"Expected {len(self.output_labels)} expression outputs, got {probs.size}"
            )

        return ExpressionScores.from_mapping({
            label: float(np.clip(p, 0.0, 1.0))
            for label, p in zip(self.output_labels, probs)
            if label in EXPRESSION_LABELS
        })

    def close(self) -> None:
        """Release the face detector."""
        if self._detector is not None and hasattr(self._detector, "close"):
            self._detector.close()
        self._detector = None

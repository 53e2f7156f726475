"""
Model artifact resolution and loader construction.

Model locations come from the configuration and may be local paths or
http(s) URLs. URLs are downloaded once into the model cache directory;
later runs reuse the downloaded file.
"""

import logging
import os
import urllib.request
from pathlib import Path
from typing import Callable, Dict, Optional, Union
from urllib.parse import urlparse

from .config import ControlConfig
from .model_cache import ModelKind
from .models.expression import ExpressionRecognizer
from .models.gesture import DirectionClassifier, FeatureExtractor

logger = logging.getLogger(__name__)


def is_url(location: str) -> bool:
    return urlparse(location).scheme in ("http", "https")


class ModelSource:
    """Resolves configured model locations and builds ModelCache loaders."""

    def __init__(self, config: ControlConfig):
        self.config = config
        self.cache_dir = Path(os.path.expanduser(config.model_cache_dir))

    def resolve(self, location: Union[str, Path]) -> Path:
        """
        Turn a configured location into a local file path.

        Args:
            location: Local path or http(s) URL

        Returns:
            Path of an existing local file

        Raises:
            FileNotFoundError: If a local path doesn't exist
        """
        location = str(location)
        if not is_url(location):
            path = Path(os.path.expanduser(location))
            if not path.exists():
                raise FileNotFoundError(f"Model not found: {path}")
            return path

        filename = Path(urlparse(location).path).name or "model.bin"
        path = self.cache_dir / filename
        if path.exists():
            return path

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        partial = path.with_name(path.name + ".part")
        logger.info(f"Downloading {location} to {path}...")
        try:
            urllib.request.urlretrieve(location, partial)
            partial.replace(path)
        finally:
            if partial.exists():
                partial.unlink()
        logger.info("Model downloaded successfully.")
        return path

    def location(self, kind: ModelKind) -> Optional[str]:
        """Configured location of a kind; None if it is not configured."""
        if kind is ModelKind.EXPRESSION:
            if self.config.face_detector_model and self.config.expression_model:
                return self.config.expression_model
            return None
        if kind is ModelKind.GESTURE_FEATURE_EXTRACTOR:
            return self.config.feature_extractor_model
        if kind is ModelKind.GESTURE_CLASSIFIER:
            return self.config.gesture_classifier_model
        return None

    def load_expression(self) -> ExpressionRecognizer:
        return ExpressionRecognizer.from_files(
            self.resolve(self.config.face_detector_model),
            self.resolve(self.config.expression_model),
            min_detection_confidence=self.config.min_face_detection_confidence,
            output_labels=self.config.expression_output_labels,
            pixel_scale=self.config.expression_pixel_scale,
            device=self.config.device,
            output_logits=self.config.expression_output_logits,
        )

    def load_feature_extractor(self) -> FeatureExtractor:
        return FeatureExtractor.from_file(
            self.resolve(self.config.feature_extractor_model),
            normalization=self.config.feature_normalization,
            device=self.config.device,
        )

    def load_classifier(self) -> DirectionClassifier:
        return DirectionClassifier.from_file(
            self.resolve(self.config.gesture_classifier_model),
            labels=self.config.gesture_labels,
            device=self.config.device,
            output_logits=self.config.gesture_output_logits,
        )

    def loaders(self) -> Dict[ModelKind, Callable[[], object]]:
        """
        Blocking loaders for every configured kind.

        Kinds without a configured location are left out, so the model cache
        reports them as unavailable (for example, no trained classifier yet).
        """
        builders = {
            ModelKind.EXPRESSION: self.load_expression,
            ModelKind.GESTURE_FEATURE_EXTRACTOR: self.load_feature_extractor,
            ModelKind.GESTURE_CLASSIFIER: self.load_classifier,
        }
        return {
            kind: builder
            for kind, builder in builders.items()
            if self.location(kind)
        }

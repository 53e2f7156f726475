"""
Configuration management for camera game control.

This module provides the ControlConfig dataclass together with loading and
saving in YAML and JSON formats.
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .mappers.confidence import MAX_CONFIDENCE_THRESHOLD, MIN_CONFIDENCE_THRESHOLD
from .mappers.speed import DEFAULT_ANGER_THRESHOLD
from .models.expression import FERPLUS_LABELS
from .models.gesture import NORMALIZATIONS
from .signals import DIRECTIONS

logger = logging.getLogger(__name__)

# Default config file locations
DEFAULT_CONFIG_PATHS = [
    Path("camera_control.yaml"),
    Path("camera_control.json"),
    Path.home() / ".config" / "camera_control" / "config.yaml",
    Path.home() / ".config" / "camera_control" / "config.json",
]

FACE_DETECTOR_URL = (
    "https://storage.googleapis.com/mediapipe-models/face_detector/"
    "blaze_face_short_range/float16/latest/blaze_face_short_range.tflite"
)
EXPRESSION_MODEL_URL = (
    "https://github.com/onnx/models/raw/main/validated/vision/body_analysis/"
    "emotion_ferplus/model/emotion-ferplus-8.onnx"
)
FEATURE_EXTRACTOR_URL = (
    "https://github.com/onnx/models/raw/main/validated/vision/classification/"
    "mobilenet/model/mobilenetv2-12.onnx"
)


@dataclass
class ControlConfig:
    """Configuration for the camera control pipeline.

    Attributes:
        camera_id: Camera device ID (default 0)
        frame_width: Requested capture width
        frame_height: Requested capture height
        mirrored: Flip frames horizontally
        expression_interval_s: Tick period of the expression loop
        gesture_interval_s: Tick period of the gesture loop
        anger_threshold: Anger score at which the game speeds up
        gesture_confidence_threshold: Confidence needed to act on a direction
        face_detector_model: Path or URL of the MediaPipe face detector
        expression_model: Path or URL of the ONNX expression classifier
        expression_output_labels: Label of each expression model output
        expression_output_logits: Whether the expression model emits logits
            (None guesses from the output range)
        expression_pixel_scale: Factor applied to 0-255 pixels for the
            expression model
        min_face_detection_confidence: Face detector score threshold
        feature_extractor_model: Path or URL of the ONNX feature extractor
        feature_normalization: "imagenet" or "mobilenet"
        gesture_classifier_model: Path of the trained ONNX direction
            classifier; None until one has been trained
        gesture_labels: Direction of each classifier output
        gesture_output_logits: Whether the classifier emits logits (None
            guesses from the output range)
        model_cache_dir: Where downloaded models are stored
        device: ONNX Runtime device ("cpu" or "cuda")
        log_performance: Whether to log loop latency statistics
    """
    camera_id: int = 0
    frame_width: int = 224
    frame_height: int = 224
    mirrored: bool = True

    expression_interval_s: float = 0.25
    gesture_interval_s: float = 0.25
    anger_threshold: float = DEFAULT_ANGER_THRESHOLD
    gesture_confidence_threshold: float = 0.6

    face_detector_model: Optional[str] = FACE_DETECTOR_URL
    expression_model: Optional[str] = EXPRESSION_MODEL_URL
    expression_output_labels: List[str] = field(
        default_factory=lambda: list(FERPLUS_LABELS)
    )
    # The FER+ model emits raw scores
    expression_output_logits: Optional[bool] = True
    expression_pixel_scale: float = 1.0
    min_face_detection_confidence: float = 0.5

    feature_extractor_model: Optional[str] = FEATURE_EXTRACTOR_URL
    feature_normalization: str = "imagenet"
    gesture_classifier_model: Optional[str] = None
    gesture_labels: List[str] = field(default_factory=lambda: list(DIRECTIONS))
    gesture_output_logits: Optional[bool] = None

    model_cache_dir: str = "~/.cache/camera_control"
    device: str = "cpu"
    log_performance: bool = True

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ValueError: If any value is out of range
        """
        if self.expression_interval_s <= 0 or self.gesture_interval_s <= 0:
            raise ValueError("Loop intervals must be positive")
        if not (0.0 <= self.anger_threshold < 1.0):
            raise ValueError(
                f"anger_threshold must be in range [0, 1), got {self.anger_threshold}"
            )
        if not (MIN_CONFIDENCE_THRESHOLD <= self.gesture_confidence_threshold
                <= MAX_CONFIDENCE_THRESHOLD):
            raise ValueError(
                f"gesture_confidence_threshold must be in range "
                f"[{MIN_CONFIDENCE_THRESHOLD}, {MAX_CONFIDENCE_THRESHOLD}], "
                f"got {self.gesture_confidence_threshold}"
            )
        if not (0.0 <= self.min_face_detection_confidence <= 1.0):
            raise ValueError("min_face_detection_confidence must be in range [0, 1]")
        if self.feature_normalization not in NORMALIZATIONS:
            raise ValueError(
                f"feature_normalization must be one of {NORMALIZATIONS}, "
                f"got {self.feature_normalization!r}"
            )
        if self.device not in ("cpu", "cuda"):
            raise ValueError(f"device must be 'cpu' or 'cuda', got {self.device!r}")
        for name in ("expression_output_logits", "gesture_output_logits"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, bool):
                raise ValueError(f"{name} must be true, false or null, got {value!r}")


def load_config(
    config_path: Optional[Union[str, Path]] = None
) -> ControlConfig:
    """
    Load control configuration from file.

    Supports YAML and JSON formats. If no path is specified, searches
    default locations.

    Args:
        config_path: Path to config file, or None to search defaults

    Returns:
        ControlConfig instance

    Raises:
        FileNotFoundError: If the given config file doesn't exist
        ValueError: If config file is invalid
    """
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
    else:
        path = None
        for default_path in DEFAULT_CONFIG_PATHS:
            if default_path.exists():
                path = default_path
                break

        if path is None:
            logger.info("No config file found, using defaults")
            return ControlConfig()

    logger.info(f"Loading config from {path}")

    try:
        with open(path, 'r') as f:
            if path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse config file: {e}") from e

    return _dict_to_config(data or {})


def save_config(
    config: ControlConfig,
    config_path: Union[str, Path],
    format: str = "auto"
) -> None:
    """
    Save control configuration to file.

    Args:
        config: Configuration to save
        config_path: Output file path
        format: "yaml", "json", or "auto" (detect from extension)
    """
    path = Path(config_path)

    if format == "auto":
        format = "yaml" if path.suffix in ('.yaml', '.yml') else "json"

    data = _config_to_dict(config)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w') as f:
        if format == "yaml":
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        else:
            json.dump(data, f, indent=2)

    logger.info(f"Saved config to {path}")


def _dict_to_config(data: Dict[str, Any]) -> ControlConfig:
    """Convert dictionary to a validated ControlConfig."""
    if not isinstance(data, dict):
        raise ValueError(f"Config must be a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(ControlConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {unknown}")

    config = ControlConfig(**{k: v for k, v in data.items() if k in known})
    config.validate()
    return config


def _config_to_dict(config: ControlConfig) -> Dict[str, Any]:
    """Convert ControlConfig to dictionary."""
    return asdict(config)


def create_default_config(output_path: Union[str, Path]) -> None:
    """
    Create a default configuration file with comments.

    Args:
        output_path: Path to write the config file
    """
    path = Path(output_path)

    if path.suffix in ('.yaml', '.yml'):
        content = f"""# Camera Game Control Configuration
# =================================

# Camera device ID (usually 0 for built-in camera)
camera_id: 0
frame_width: 224
frame_height: 224
mirrored: true

# Seconds between two ticks of each inference loop
expression_interval_s: 0.25
gesture_interval_s: 0.25

# Anger score [0, 1) at which the game starts speeding up (up to 3x)
anger_threshold: {DEFAULT_ANGER_THRESHOLD}

# Confidence needed before a predicted direction counts as tracking
# Must be within [{MIN_CONFIDENCE_THRESHOLD}, {MAX_CONFIDENCE_THRESHOLD}]
gesture_confidence_threshold: 0.6

# Model locations: local paths, or URLs downloaded into model_cache_dir
face_detector_model: {FACE_DETECTOR_URL}
expression_model: {EXPRESSION_MODEL_URL}
expression_output_labels: [{", ".join(FERPLUS_LABELS)}]
# true: outputs are logits, false: probabilities, null: guess from the range
expression_output_logits: true
expression_pixel_scale: 1.0
min_face_detection_confidence: 0.5

feature_extractor_model: {FEATURE_EXTRACTOR_URL}
# imagenet or mobilenet
feature_normalization: imagenet

# Trained direction classifier (null until one has been trained)
gesture_classifier_model: null
gesture_labels: [{", ".join(DIRECTIONS)}]
gesture_output_logits: null

model_cache_dir: ~/.cache/camera_control
device: cpu
log_performance: true
"""
    else:
        content = json.dumps(_config_to_dict(ControlConfig()), indent=2)

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        f.write(content)

    logger.info(f"Created default config at {path}")

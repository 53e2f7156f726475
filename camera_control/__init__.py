"""
Camera Control Package

Camera-driven game control: facial expressions set the game speed and
trained hand gestures steer it.
"""

__version__ = "0.1.0"

from camera_control.config import ControlConfig, load_config, save_config
from camera_control.controller import CameraController
from camera_control.errors import InferenceError, ModelLoadError
from camera_control.frame_source import CameraFrameSource, FrameSource
from camera_control.inference import (
    ExpressionInferenceLoop,
    GestureInferenceLoop,
    LoopState,
)
from camera_control.mappers import (
    ConfidenceStatus,
    confidence_status,
    normalized_confidence,
    speed_multiplier,
)
from camera_control.model_cache import ModelCache, ModelKind
from camera_control.signals import (
    DIRECTIONS,
    EXPRESSION_LABELS,
    DirectionPrediction,
    ExpressionScores,
    ExpressionSignal,
)
from camera_control.sink import ControlSignalSink, StateStore, StoreSignalSink

__all__ = [
    "ControlConfig",
    "load_config",
    "save_config",
    "CameraController",
    "InferenceError",
    "ModelLoadError",
    "CameraFrameSource",
    "FrameSource",
    "ExpressionInferenceLoop",
    "GestureInferenceLoop",
    "LoopState",
    "ConfidenceStatus",
    "confidence_status",
    "normalized_confidence",
    "speed_multiplier",
    "ModelCache",
    "ModelKind",
    "DIRECTIONS",
    "EXPRESSION_LABELS",
    "DirectionPrediction",
    "ExpressionScores",
    "ExpressionSignal",
    "ControlSignalSink",
    "StateStore",
    "StoreSignalSink",
]

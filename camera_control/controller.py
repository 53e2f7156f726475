"""
Application root for camera game control.

CameraController owns the shared frame source and model cache, wires them
into the two inference loops, and exposes the synchronous control surface
used by the UI (camera on/off, loop toggles, confidence threshold).
"""

import asyncio
import dataclasses
import logging
from typing import Dict, Optional

from .config import ControlConfig
from .frame_source import CameraFrameSource, FrameSource
from .inference import ExpressionInferenceLoop, GestureInferenceLoop
from .mappers.confidence import (
    MAX_CONFIDENCE_THRESHOLD,
    MIN_CONFIDENCE_THRESHOLD,
    ConfidenceStatus,
    confidence_status,
    normalized_confidence,
)
from .model_cache import ModelCache
from .model_source import ModelSource
from .signals import DirectionPrediction, ExpressionSignal
from .sink import ControlSignalSink, StoreSignalSink

logger = logging.getLogger(__name__)


class CameraController:
    """
    Unified controller for the camera-driven game signals.

    Usage:
        async with CameraController(config) as controller:
            controller.set_camera_on(True)
            controller.set_expression_loop_active(True)
            ...
            speed = controller.sink.store.get("speed_multiplier")

    All setters must be called from the event loop thread. The loops pick
    up changes at their next tick.
    """

    def __init__(
        self,
        config: Optional[ControlConfig] = None,
        frame_source: Optional[FrameSource] = None,
        model_cache: Optional[ModelCache] = None,
        sink: Optional[ControlSignalSink] = None,
    ):
        """
        Args:
            config: Configuration. Defaults to ControlConfig().
            frame_source: Frame source to poll. Defaults to a
                CameraFrameSource built from the config.
            model_cache: Model cache. Defaults to one with loaders for every
                model location in the config.
            sink: Signal receiver. Defaults to a StoreSignalSink.
        """
        self.config = config or ControlConfig()
        self.config.validate()

        self.frame_source = frame_source or CameraFrameSource(
            camera_id=self.config.camera_id,
            frame_width=self.config.frame_width,
            frame_height=self.config.frame_height,
            mirrored=self.config.mirrored,
        )
        self.model_cache = model_cache or ModelCache(ModelSource(self.config).loaders())
        self.sink = sink or StoreSignalSink()

        self.expression_loop = ExpressionInferenceLoop(
            self.frame_source,
            self.model_cache,
            self.sink,
            interval=self.config.expression_interval_s,
            threshold=self.config.anger_threshold,
            log_performance=self.config.log_performance,
        )
        self.gesture_loop = GestureInferenceLoop(
            self.frame_source,
            self.model_cache,
            self.sink,
            interval=self.config.gesture_interval_s,
            log_performance=self.config.log_performance,
        )

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def camera_on(self) -> bool:
        return self.frame_source.is_available

    def set_camera_on(self, on: bool) -> bool:
        """
        Switch the camera on or off.

        Switching it off also disarms the gesture loop. The expression loop
        keeps running and skips its ticks until the camera is back.

        Returns:
            Whether the camera is on after the call.
        """
        if on:
            open_camera = getattr(self.frame_source, "open", None)
            if open_camera is not None:
                open_camera()
        else:
            self.set_gesture_loop_active(False)
            release = getattr(self.frame_source, "release", None)
            if release is not None:
                release()
        return self.camera_on

    def set_expression_loop_active(self, active: bool) -> bool:
        """
        Start or stop the expression loop.

        Returns:
            Whether the loop is running after the call.
        """
        if active:
            return self.expression_loop.start()
        self.expression_loop.stop()
        return False

    def set_gesture_loop_active(self, active: bool) -> bool:
        """
        Arm or disarm the gesture loop.

        Arming fails without a trained classifier or with the camera off.
        Disarming clears the published direction.

        Returns:
            Whether the loop is running after the call.
        """
        if active:
            return self.gesture_loop.start()

        was_running = self.gesture_loop.is_running
        self.gesture_loop.stop()
        if was_running:
            self.sink.publish_gesture(DirectionPrediction.none())
        return False

    @property
    def gesture_confidence_threshold(self) -> float:
        return self.config.gesture_confidence_threshold

    def set_gesture_confidence_threshold(self, value: float) -> None:
        """
        Set the confidence a direction needs to count as tracking.

        Raises:
            ValueError: If value is outside [0.5, 0.95]
        """
        if not (MIN_CONFIDENCE_THRESHOLD <= value <= MAX_CONFIDENCE_THRESHOLD):
            raise ValueError(
                f"Confidence threshold must be in range "
                f"[{MIN_CONFIDENCE_THRESHOLD}, {MAX_CONFIDENCE_THRESHOLD}], got {value}"
            )
        self.config.gesture_confidence_threshold = value
        logger.info(f"Gesture confidence threshold set to {value:.2f}")

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def expression_signal(self) -> ExpressionSignal:
        """Last expression signal, with the current model-loaded flag."""
        return dataclasses.replace(
            self.expression_loop.last_signal,
            is_model_loaded=self.expression_loop.is_model_loaded,
        )

    @property
    def gesture_prediction(self) -> DirectionPrediction:
        return self.gesture_loop.last_prediction

    @property
    def gesture_status(self) -> ConfidenceStatus:
        return confidence_status(
            self.gesture_loop.is_running,
            self.gesture_loop.last_prediction.confidence,
            self.gesture_confidence_threshold,
        )

    @property
    def gesture_ring_intensity(self) -> float:
        """Confidence relative to the threshold in [0, 1]; 0 while disarmed."""
        if not self.gesture_loop.is_running:
            return 0.0
        return normalized_confidence(
            self.gesture_loop.last_prediction.confidence,
            self.gesture_confidence_threshold,
        )

    def get_performance_stats(self) -> Dict[str, Dict[str, float]]:
        return {
            "expression": self.expression_loop.get_performance_stats(),
            "gesture": self.gesture_loop.get_performance_stats(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def preload(self) -> bool:
        """Load the expression model before the first tick."""
        return await self.expression_loop.preload()

    async def shutdown(self) -> None:
        """Stop both loops, wait for them to exit and switch the camera off."""
        self.set_expression_loop_active(False)
        self.set_gesture_loop_active(False)
        await asyncio.gather(self.expression_loop.join(), self.gesture_loop.join())

        release = getattr(self.frame_source, "release", None)
        if release is not None:
            release()
        logger.info("Camera controller shut down")

    async def __aenter__(self) -> "CameraController":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

"""
Real-time inference loops.

Two independent polling loops share one frame source and one model cache:

- ExpressionInferenceLoop: camera -> expression model -> speed multiplier
- GestureInferenceLoop: camera -> feature extractor -> classifier -> direction

Each loop runs as its own asyncio task. Ticks of one loop never overlap:
a tick captures, infers and publishes, then waits out the rest of the
interval. Stopping is cooperative; the loop notices at the next tick
boundary or while waiting, and a tick that is already running finishes
without publishing. Starting the loop again before its task has exited
resumes that task.
"""

import asyncio
import dataclasses
import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

import numpy as np

from .errors import ModelLoadError
from .frame_source import FrameSource
from .mappers.speed import DEFAULT_ANGER_THRESHOLD, is_angry, speed_multiplier
from .model_cache import ModelCache, ModelKind
from .signals import DirectionPrediction, ExpressionSignal
from .sink import ControlSignalSink

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 0.25


class LoopState(Enum):
    """Lifecycle of an inference loop."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


class InferenceLoop:
    """Scheduling shared by the inference loops.

    Subclasses implement _tick() and may restrict can_start(). start() and
    stop() are plain synchronous calls; start() must be called from code
    running on the event loop.
    """

    name = "inference"

    def __init__(
        self,
        frame_source: FrameSource,
        model_cache: ModelCache,
        sink: ControlSignalSink,
        interval: float = DEFAULT_INTERVAL_S,
        log_performance: bool = True,
    ):
        """
        Args:
            frame_source: Shared camera frame source (borrowed).
            model_cache: Shared model cache (borrowed).
            sink: Receiver of the published signals.
            interval: Tick period in seconds.
            log_performance: Whether to record tick latencies.
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")

        self.frame_source = frame_source
        self.model_cache = model_cache
        self.sink = sink
        self.interval = interval
        self.log_performance = log_performance

        self._state = LoopState.IDLE
        self._task: Optional[asyncio.Task] = None
        # Cancellation token of the current run; None while idle
        self._stop_event: Optional[asyncio.Event] = None

        self._latencies: Deque[float] = deque(maxlen=1000)
        self._tick_count = 0

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is LoopState.RUNNING

    def can_start(self) -> bool:
        """Check the preconditions for start(), logging why it can't."""
        if not self.frame_source.is_available:
            logger.warning(f"Cannot start {self.name} loop: camera not available")
            return False
        return True

    def start(self) -> bool:
        """
        Start polling.

        Returns:
            True if the loop is running after the call, False if a
            precondition failed.
        """
        if self._state is LoopState.RUNNING:
            return True
        if not self.can_start():
            return False

        if self._state is LoopState.STOPPING:
            # The task has not exited yet; it carries on with the new run
            self._state = LoopState.RUNNING
            self._stop_event.clear()
            logger.info(f"{self.name} loop resumed before stopping")
            return True

        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._state = LoopState.RUNNING
        self._task = loop.create_task(self._run(), name=f"{self.name}-loop")
        logger.info(f"{self.name} loop started (interval {self.interval:.3f}s)")
        return True

    def stop(self) -> None:
        """Request the loop to stop at the next tick boundary."""
        if self._state is not LoopState.RUNNING:
            return
        self._state = LoopState.STOPPING
        self._stop_event.set()
        logger.info(f"{self.name} loop stop requested")

    async def join(self) -> None:
        """Wait until the loop task has exited."""
        task = self._task
        if task is not None:
            await task

    async def _run(self) -> None:
        stop_event = self._stop_event
        try:
            while self._state is LoopState.RUNNING:
                tick_start = time.perf_counter()
                await self._tick()
                elapsed = time.perf_counter() - tick_start

                self._tick_count += 1
                if self.log_performance:
                    self._latencies.append(elapsed * 1000)

                if self._state is not LoopState.RUNNING:
                    break

                # Wait out the rest of the interval, waking early on stop()
                remaining = max(0.0, self.interval - elapsed)
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass
        except Exception:
            logger.exception(f"{self.name} loop failed")
        finally:
            self._state = LoopState.IDLE
            self._stop_event = None
            self._task = None
            logger.info(f"{self.name} loop stopped after {self._tick_count} ticks")

    async def _tick(self) -> None:
        raise NotImplementedError

    def _should_publish(self) -> bool:
        return self._state is LoopState.RUNNING

    async def _run_model(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking model call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    def get_performance_stats(self) -> Dict[str, float]:
        """
        Get tick latency statistics.

        Returns:
            Dictionary with mean/p95/max latency in ms, the tick rate the
            latency alone would allow, and the number of ticks run
        """
        if not self._latencies:
            return {'mean_ms': 0.0, 'p95_ms': 0.0, 'max_ms': 0.0, 'fps': 0.0,
                    'tick_count': self._tick_count}

        latencies = np.array(self._latencies)
        mean = float(np.mean(latencies))
        return {
            'mean_ms': mean,
            'p95_ms': float(np.percentile(latencies, 95)),
            'max_ms': float(np.max(latencies)),
            'fps': 1000.0 / mean if mean > 0 else 0.0,
            'tick_count': self._tick_count,
        }


class ExpressionInferenceLoop(InferenceLoop):
    """表情推理循环 (Expression inference loop)

    Publishes the expression scores, anger score and speed multiplier
    whenever a face is detected. Ticks without a frame, without a face or
    with a failed model call publish nothing, so the last published values
    stay in effect. The only exception is the model-loaded flag, published
    once as soon as the model is ready.
    """

    name = "expression"

    def __init__(
        self,
        frame_source: FrameSource,
        model_cache: ModelCache,
        sink: ControlSignalSink,
        interval: float = DEFAULT_INTERVAL_S,
        threshold: float = DEFAULT_ANGER_THRESHOLD,
        log_performance: bool = True,
    ):
        super().__init__(frame_source, model_cache, sink, interval, log_performance)
        if not (0.0 <= threshold < 1.0):
            raise ValueError(f"threshold must be in range [0, 1), got {threshold}")
        self.threshold = threshold
        self._last_signal = ExpressionSignal()

    @property
    def last_signal(self) -> ExpressionSignal:
        """Last published signal (defaults before the first detection)."""
        return self._last_signal

    @property
    def is_model_loaded(self) -> bool:
        return self.model_cache.is_loaded(ModelKind.EXPRESSION)

    def can_start(self) -> bool:
        if not self.model_cache.has_loader(ModelKind.EXPRESSION):
            logger.warning("Cannot start expression loop: no expression model configured")
            return False
        return super().can_start()

    async def preload(self) -> bool:
        """
        Load the expression model ahead of the first tick.

        Returns:
            True if the model is loaded. A failure is not fatal; the next
            tick tries again.
        """
        try:
            await self.model_cache.ensure_loaded(ModelKind.EXPRESSION)
        except ModelLoadError as e:
            logger.warning(f"Expression model preload failed: {e}")
            return False

        self._announce_model_loaded()
        return True

    def _announce_model_loaded(self) -> None:
        """Publish the loaded flag once, keeping the last detection values."""
        if self._last_signal.is_model_loaded:
            return
        self._last_signal = dataclasses.replace(self._last_signal, is_model_loaded=True)
        self.sink.publish_expression(self._last_signal)

    async def _tick(self) -> None:
        frame = await self.frame_source.capture()
        if frame is None:
            logger.debug("No frame available, skipping expression tick")
            return

        try:
            model = await self.model_cache.ensure_loaded(ModelKind.EXPRESSION)
        except ModelLoadError as e:
            logger.warning(f"Skipping expression tick: {e}")
            return

        try:
            scores = await self._run_model(model.predict, frame)
        except Exception as e:
            logger.error(f"Expression inference failed: {e}")
            if self._should_publish():
                self._announce_model_loaded()
            return

        if scores is None:
            # Keep the previous values; transient misses would flicker
            logger.debug("No face detected")
            if self._should_publish():
                self._announce_model_loaded()
            return

        if not self._should_publish():
            return

        anger = scores.anger
        signal = ExpressionSignal(
            expression=scores,
            anger_score=anger,
            speed_multiplier=speed_multiplier(anger, self.threshold),
            is_model_loaded=True,
            is_angry_detected=is_angry(anger, self.threshold),
        )
        self._last_signal = signal
        self.sink.publish_expression(signal)

        if signal.is_angry_detected:
            logger.info(
                f"Anger detected: {anger:.0%}, speed {signal.speed_multiplier:.1f}x"
            )
        else:
            logger.debug(f"Expression {scores.dominant}, anger {anger:.0%}")


class GestureInferenceLoop(InferenceLoop):
    """Direction prediction loop.

    Only starts when the camera is on and a trained classifier is
    configured. Every tick publishes: a tick that cannot produce a
    prediction publishes DirectionPrediction.none(), since a stale
    direction must not keep steering the game.
    """

    name = "gesture"

    def __init__(
        self,
        frame_source: FrameSource,
        model_cache: ModelCache,
        sink: ControlSignalSink,
        interval: float = DEFAULT_INTERVAL_S,
        log_performance: bool = True,
    ):
        super().__init__(frame_source, model_cache, sink, interval, log_performance)
        self._last_prediction = DirectionPrediction.none()

    @property
    def last_prediction(self) -> DirectionPrediction:
        return self._last_prediction

    @property
    def has_classifier(self) -> bool:
        return (self.model_cache.has_loader(ModelKind.GESTURE_CLASSIFIER)
                and self.model_cache.has_loader(ModelKind.GESTURE_FEATURE_EXTRACTOR))

    def can_start(self) -> bool:
        if not self.has_classifier:
            logger.warning("Cannot start gesture loop: train a classifier first")
            return False
        return super().can_start()

    async def _tick(self) -> None:
        prediction = await self._predict()

        if not self._should_publish():
            return

        self._last_prediction = prediction
        self.sink.publish_gesture(prediction)
        logger.debug(f"Direction {prediction.label} ({prediction.confidence:.0%})")

    async def _predict(self) -> DirectionPrediction:
        frame = await self.frame_source.capture()
        if frame is None:
            return DirectionPrediction.none()

        try:
            extractor = await self.model_cache.ensure_loaded(
                ModelKind.GESTURE_FEATURE_EXTRACTOR
            )
            classifier = await self.model_cache.ensure_loaded(
                ModelKind.GESTURE_CLASSIFIER
            )
        except ModelLoadError as e:
            logger.warning(f"Gesture models unavailable: {e}")
            return DirectionPrediction.none()

        try:
            features = await self._run_model(extractor.extract, frame)
            prediction = await self._run_model(classifier.classify, features)
        except Exception as e:
            logger.error(f"Gesture inference failed: {e}")
            return DirectionPrediction.none()

        return prediction if prediction is not None else DirectionPrediction.none()

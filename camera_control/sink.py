"""
Where the inference loops deliver their signals.

The loops only know the ControlSignalSink protocol. StoreSignalSink writes
the signals into a StateStore, a small key/value store the presentation
layer reads at render time or subscribes to.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from .signals import DirectionPrediction, ExpressionSignal

logger = logging.getLogger(__name__)

# Keys written by StoreSignalSink
EMOTION = "emotion"
ANGER_SCORE = "anger_score"
SPEED_MULTIPLIER = "speed_multiplier"
IS_MODEL_LOADED = "is_model_loaded"
IS_ANGRY_DETECTED = "is_angry_detected"
GESTURE_DIRECTION = "gesture_direction"
GESTURE_CONFIDENCE = "gesture_confidence"

Subscriber = Callable[[str, Any], None]


class ControlSignalSink(Protocol):
    """Consumer of the loop outputs. Calls are fire-and-forget."""

    def publish_expression(self, signal: ExpressionSignal) -> None:
        ...

    def publish_gesture(self, prediction: DirectionPrediction) -> None:
        ...


class StateStore:
    """In-memory key/value state shared with the presentation layer.

    Last write wins. Subscribers are notified synchronously, and only when
    a value actually changes. The store is meant to be used from the event
    loop thread only.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})
        self._subscribers: Dict[str, List[Subscriber]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if key in self._values and self._values[key] == value:
            return
        self._values[key] = value

        for callback in list(self._subscribers.get(key, ())):
            try:
                callback(key, value)
            except Exception:
                logger.exception(f"State subscriber for '{key}' failed")

    def update(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            self.set(key, value)

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """
        Call callback(key, value) whenever key changes.

        Returns:
            Function that removes the subscription.
        """
        self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def snapshot(self) -> Dict[str, Any]:
        """Copy of all current values."""
        return dict(self._values)


class StoreSignalSink:
    """ControlSignalSink writing into a StateStore."""

    DEFAULTS = {
        EMOTION: None,
        ANGER_SCORE: 0.0,
        SPEED_MULTIPLIER: 1.0,
        IS_MODEL_LOADED: False,
        IS_ANGRY_DETECTED: False,
        GESTURE_DIRECTION: None,
        GESTURE_CONFIDENCE: 0.0,
    }

    def __init__(self, store: Optional[StateStore] = None):
        self.store = store if store is not None else StateStore()
        for key, value in self.DEFAULTS.items():
            if self.store.get(key, self) is self:
                self.store.set(key, value)

    def publish_expression(self, signal: ExpressionSignal) -> None:
        self.store.update({
            EMOTION: signal.expression.to_dict() if signal.expression else None,
            ANGER_SCORE: signal.anger_score,
            SPEED_MULTIPLIER: signal.speed_multiplier,
            IS_MODEL_LOADED: signal.is_model_loaded,
            IS_ANGRY_DETECTED: signal.is_angry_detected,
        })

    def publish_gesture(self, prediction: DirectionPrediction) -> None:
        self.store.update({
            GESTURE_DIRECTION: prediction.label,
            GESTURE_CONFIDENCE: prediction.confidence,
        })

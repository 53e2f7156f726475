"""
Lazily-initialized, deduplicated model loading.

Both inference loops ask the cache for the models they need on every tick.
The first request for a kind starts the load; requests arriving while that
load is in flight wait for the same result instead of starting another one.
"""

import asyncio
import inspect
import logging
from collections import Counter
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from .errors import ModelLoadError

logger = logging.getLogger(__name__)


class ModelKind(Enum):
    """Identity of a cached model."""

    EXPRESSION = "expression"
    GESTURE_FEATURE_EXTRACTOR = "gesture-feature-extractor"
    GESTURE_CLASSIFIER = "gesture-classifier"


# A loader is either a coroutine function or a blocking callable
Loader = Union[Callable[[], Awaitable[Any]], Callable[[], Any]]


class ModelCache:
    """模型缓存 (Model cache)

    Loads each model kind at most once and keeps it for the lifetime of the
    cache. Meant to be created by the application root and shared by
    reference with every loop that needs models.

    Blocking loaders run in the event loop's default executor, coroutine
    loaders are awaited directly. If a load fails, every waiting caller gets
    the same ModelLoadError and the next ensure_loaded() call retries.

    Usage:
        cache = ModelCache({ModelKind.EXPRESSION: load_expression_model})
        model = await cache.ensure_loaded(ModelKind.EXPRESSION)
    """

    def __init__(self, loaders: Optional[Mapping[ModelKind, Loader]] = None):
        """
        Args:
            loaders: Loader per model kind. Kinds without a loader cannot be
                loaded.
        """
        self._loaders: Dict[ModelKind, Loader] = dict(loaders or {})
        self._models: Dict[ModelKind, Any] = {}
        self._pending: Dict[ModelKind, "asyncio.Future[Any]"] = {}
        self._load_counts: Counter = Counter()

    def has_loader(self, kind: ModelKind) -> bool:
        """Check whether the kind can be loaded at all."""
        return kind in self._loaders

    def is_loaded(self, kind: ModelKind) -> bool:
        """Check whether the kind is cached."""
        return kind in self._models

    def is_loading(self, kind: ModelKind) -> bool:
        """Check whether a load for the kind is in flight."""
        return kind in self._pending

    def get(self, kind: ModelKind) -> Optional[Any]:
        """Return the cached model, or None if it is not loaded yet."""
        return self._models.get(kind)

    def load_count(self, kind: ModelKind) -> int:
        """Number of underlying loads started for the kind."""
        return self._load_counts[kind]

    async def ensure_loaded(self, kind: ModelKind) -> Any:
        """
        Return the model for a kind, loading it on first use.

        Args:
            kind: Model kind to load.

        Returns:
            The loaded model. Every caller gets the same object.

        Raises:
            ModelLoadError: If there is no loader for the kind or the load
                failed. A later call starts a new attempt.
        """
        model = self._models.get(kind)
        if model is not None:
            return model

        pending = self._pending.get(kind)
        if pending is None:
            if kind not in self._loaders:
                raise ModelLoadError(kind, KeyError(f"no loader registered for {kind.value}"))
            pending = asyncio.ensure_future(self._load(kind))
            # Mark a failure as retrieved even if every waiter was cancelled
            pending.add_done_callback(_consume_exception)
            self._pending[kind] = pending

        # A cancelled caller must not cancel the load other callers wait on
        return await asyncio.shield(pending)

    async def _load(self, kind: ModelKind) -> Any:
        loader = self._loaders[kind]
        self._load_counts[kind] += 1
        logger.info(f"Loading {kind.value} model...")

        try:
            if inspect.iscoroutinefunction(loader):
                model = await loader()
            else:
                loop = asyncio.get_running_loop()
                model = await loop.run_in_executor(None, loader)
            if model is None:
                raise ValueError("loader returned None")
        except Exception as e:
            self._pending.pop(kind, None)
            logger.warning(f"Failed to load {kind.value} model: {e}")
            raise ModelLoadError(kind, e) from e

        self._models[kind] = model
        self._pending.pop(kind, None)
        logger.info(f"{kind.value} model loaded")
        return model


def _consume_exception(future: "asyncio.Future[Any]") -> None:
    if not future.cancelled():
        future.exception()

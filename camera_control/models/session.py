"""
ONNX Runtime helpers shared by the model wrappers.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)


def create_session(model_path: Union[str, Path], device: str = "cpu"):
    """
    Create an ONNX Runtime inference session.

    Args:
        model_path: Path to ONNX model file
        device: Execution device ("cpu" or "cuda")

    Returns:
        onnxruntime.InferenceSession

    Raises:
        FileNotFoundError: If model file doesn't exist
        ImportError: If onnxruntime is not installed
    """
    model_path = Path(model_path)
    if not model_path.exists():
        raise FileNotFoundError(f"Model not found: {model_path}")

    try:
        import onnxruntime as ort
    except ImportError:
        raise ImportError(
            "onnxruntime not installed. Install with: pip install onnxruntime"
        )

    sess_options = ort.SessionOptions()
    sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL

    if device == "cuda":
        providers = ['CUDAExecutionProvider', 'CPUExecutionProvider']
    else:
        providers = ['CPUExecutionProvider']

    session = ort.InferenceSession(
        str(model_path),
        sess_options=sess_options,
        providers=providers,
    )
    logger.info(f"Loaded ONNX model from {model_path}")
    logger.debug(f"Inputs: {[(i.name, i.shape) for i in session.get_inputs()]}")
    return session


def input_layout(session) -> Tuple[str, bool, int, int, int]:
    """
    Describe the first image input of a session.

    Returns:
        Tuple of (input name, channels_first, channels, height, width).
        Dynamic dimensions are reported as -1.
    """
    inp = session.get_inputs()[0]
    shape = [d if isinstance(d, int) else -1 for d in inp.shape]
    if len(shape) != 4:
        raise ValueError(f"Expected a 4-d image input, got shape {inp.shape}")

    # NCHW when the second axis looks like a channel count
    channels_first = shape[1] in (1, 3)
    if channels_first:
        _, channels, height, width = shape
    else:
        _, height, width, channels = shape
    return inp.name, channels_first, channels, height, width


def as_distribution(values: np.ndarray, logits: Optional[bool] = None) -> np.ndarray:
    """
    Interpret raw model output as per-class probabilities.

    Args:
        values: Raw output of the model.
        logits: True if the model emits logits, False if it emits
            probabilities. None guesses from the range: outputs already in
            [0, 1] are used as they are, anything else is softmaxed.

    Raises:
        ValueError: If the output is empty or not finite, or declared
            probabilities fall outside [0, 1]
    """
    values = np.asarray(values, dtype=np.float64).reshape(-1)
    if values.size == 0 or not np.all(np.isfinite(values)):
        raise ValueError("Model output is empty or not finite")

    in_range = values.min() >= 0.0 and values.max() <= 1.0
    if logits is False and not in_range:
        raise ValueError(
            f"Expected probabilities in [0, 1], got range "
            f"[{values.min():.3f}, {values.max():.3f}]"
        )
    if not logits and in_range:
        return values

    shifted = np.exp(values - values.max())
    return shifted / shifted.sum()

"""
Camera frame sources.

A frame source hands out independent still frames on demand. It is owned by
the application and shared by both inference loops, so it never assumes a
single consumer.
"""

import logging
from typing import Optional, Protocol

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    """Anything the inference loops can poll for frames."""

    @property
    def is_available(self) -> bool:
        """Whether capture() can currently produce frames."""
        ...

    async def capture(self) -> Optional[np.ndarray]:
        """Return a read-only BGR frame (H, W, 3), or None if unavailable."""
        ...


class CameraFrameSource:
    """OpenCV webcam frame source.

    The camera is switched on with open() and off with release(). While it
    is off, capture() returns None instead of raising, so loops simply skip
    their tick.

    Reads happen on the event loop thread: a single read is prompt, and the
    capture device is never touched from two threads at once.
    """

    def __init__(
        self,
        camera_id: int = 0,
        frame_width: int = 224,
        frame_height: int = 224,
        mirrored: bool = True,
    ):
        """
        Args:
            camera_id: OpenCV camera device ID.
            frame_width: Requested capture width in pixels.
            frame_height: Requested capture height in pixels.
            mirrored: Flip frames horizontally, like a selfie preview.
        """
        if frame_width < 1 or frame_height < 1:
            raise ValueError(
                f"Frame size must be positive, got {frame_width}x{frame_height}"
            )

        self.camera_id = camera_id
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.mirrored = mirrored
        self._camera: Optional[cv2.VideoCapture] = None

    @property
    def is_available(self) -> bool:
        return self._camera is not None and self._camera.isOpened()

    def open(self) -> bool:
        """
        Switch the camera on.

        Returns:
            True if the camera is open after the call.
        """
        if self.is_available:
            return True

        camera = cv2.VideoCapture(self.camera_id)
        if not camera.isOpened():
            logger.error(f"Failed to open camera {self.camera_id}")
            camera.release()
            return False

        camera.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
        camera.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
        self._camera = camera
        logger.info(f"Camera {self.camera_id} opened")
        return True

    def release(self) -> None:
        """Switch the camera off."""
        if self._camera is not None:
            self._camera.release()
            self._camera = None
            logger.info(f"Camera {self.camera_id} released")

    async def capture(self) -> Optional[np.ndarray]:
        if not self.is_available:
            return None

        ret, frame = self._camera.read()
        if not ret or frame is None or frame.size == 0:
            logger.debug("Camera returned no frame")
            return None

        if self.mirrored:
            frame = cv2.flip(frame, 1)

        # Each capture is an independent snapshot; nobody may mutate it
        frame.flags.writeable = False
        return frame

    def __enter__(self) -> "CameraFrameSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

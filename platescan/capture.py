"""
Frame Capture

Grabs a still frame from a live video source as a size-bounded raster.
"""

import asyncio
import logging
from concurrent.futures import Executor
from typing import Optional

import cv2
import numpy as np

from .exceptions import CameraUnavailable
from .types import RasterImage

logger = logging.getLogger(__name__)


def bound_frame(frame: np.ndarray, max_size: int) -> np.ndarray:
    """Downscale a frame so its longest side is at most ``max_size``."""
    height, width = frame.shape[:2]
    longest = max(width, height)
    if max_size <= 0 or longest <= max_size:
        return frame

    scale = max_size / longest
    return cv2.resize(
        frame,
        (max(1, round(width * scale)), max(1, round(height * scale))),
        interpolation=cv2.INTER_AREA
    )


class FrameCapturer:
    """
    Still-image grabber over any source exposing ``get_frame()``.

    ``get_frame`` returns the latest OpenCV BGR frame or None when the
    source has nothing to offer.
    """

    def __init__(
        self,
        source,
        max_size: int = 1280,
        executor: Optional[Executor] = None
    ):
        self.source = source
        self.max_size = max_size
        self._executor = executor

    async def grab(self) -> RasterImage:
        """
        Capture one frame.

        Raises:
            CameraUnavailable: If the source has no frame.
        """
        loop = asyncio.get_running_loop()
        frame = await loop.run_in_executor(self._executor, self.source.get_frame)

        if frame is None or frame.size == 0:
            raise CameraUnavailable("Unable to access the camera.")

        return RasterImage.from_bgr(bound_frame(frame, self.max_size))

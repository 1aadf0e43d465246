"""
Pipeline Data Types

Value objects passed between the recognition stages.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from .exceptions import TensorPrepFailure

Box = Tuple[float, float, float, float]


@dataclass
class RasterImage:
    """RGBA8 image: ``pixels`` is an (height, width, 4) uint8 array."""

    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self):
        if self.pixels.shape != (self.height, self.width, 4):
            raise TensorPrepFailure(
                f"Pixel buffer shape {self.pixels.shape} does not match "
                f"{self.width}x{self.height} RGBA"
            )

    @classmethod
    def from_rgba(cls, pixels: np.ndarray) -> 'RasterImage':
        pixels = np.ascontiguousarray(pixels, dtype=np.uint8)
        h, w = pixels.shape[:2]
        return cls(width=w, height=h, pixels=pixels)

    @classmethod
    def from_bgr(cls, image: np.ndarray) -> 'RasterImage':
        """
        Build a raster from an OpenCV image.

        Accepts grayscale, BGR or BGRA arrays as returned by ``cv2.imread``
        and ``cv2.VideoCapture.read``.
        """
        if image is None or image.size == 0:
            raise TensorPrepFailure("Image is empty")

        if image.ndim == 2:
            rgba = cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
        elif image.shape[2] == 4:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
        elif image.shape[2] == 3:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
        else:
            raise TensorPrepFailure(f"Unsupported channel count: {image.shape[2]}")

        return cls.from_rgba(rgba)

    def to_bgr(self) -> np.ndarray:
        return cv2.cvtColor(self.pixels, cv2.COLOR_RGBA2BGR)

    def to_rgb(self) -> np.ndarray:
        return np.ascontiguousarray(self.pixels[:, :, :3])

    def luminance(self) -> np.ndarray:
        """Float luminance plane using 0.299R + 0.587G + 0.114B."""
        rgb = self.pixels[:, :, :3].astype(np.float32)
        return rgb[:, :, 0] * 0.299 + rgb[:, :, 1] * 0.587 + rgb[:, :, 2] * 0.114

    def crop(self, x: int, y: int, w: int, h: int) -> 'RasterImage':
        return RasterImage.from_rgba(self.pixels[y:y + h, x:x + w].copy())


@dataclass(frozen=True)
class LetterboxTransform:
    """Geometry needed to map between image and tensor coordinates."""

    scale: float
    pad_x: int
    pad_y: int
    target_width: int
    target_height: int

    def to_tensor(self, x: float, y: float) -> Tuple[float, float]:
        return x * self.scale + self.pad_x, y * self.scale + self.pad_y

    def to_image(self, x: float, y: float) -> Tuple[float, float]:
        return (x - self.pad_x) / self.scale, (y - self.pad_y) / self.scale


@dataclass
class PreparedTensor:
    """Flat numeric buffer with its declared shape."""

    data: np.ndarray
    shape: Tuple[int, ...]
    transform: LetterboxTransform

    def __post_init__(self):
        expected = math.prod(self.shape)
        if self.data.ndim != 1 or self.data.size != expected:
            raise TensorPrepFailure(
                f"Buffer of {self.data.size} elements does not match shape {self.shape}"
            )

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    def as_batch(self) -> np.ndarray:
        """Shaped array with a leading batch axis, ready for ``session.run``."""
        return self.data.reshape((1,) + tuple(self.shape))


@dataclass
class Detection:
    """Plate bounding box in input-tensor coordinates."""

    box: Box
    score: float

    def __post_init__(self):
        x1, y1, x2, y2 = self.box
        if x1 > x2 or y1 > y2:
            raise ValueError(f"Invalid box corners: {self.box}")

    def to_dict(self) -> Dict:
        return {
            'bbox': [round(v, 2) for v in self.box],
            'score': round(self.score, 4),
        }


@dataclass
class DecodedText:
    text: str
    confidence: Optional[float]


@dataclass
class ScanResult:
    """Outcome of one successful plate scan."""

    plate_text: str
    confidence: Optional[float]
    raw_text: str
    crop: Optional[RasterImage] = None
    detection: Optional[Detection] = None
    crop_box: Optional[Tuple[int, int, int, int]] = None
    processing_time_ms: float = 0.0
    engine: str = 'grid'

    def to_dict(self) -> Dict:
        return {
            'plate_text': self.plate_text,
            'confidence': (
                round(self.confidence, 2) if self.confidence is not None else None
            ),
            'raw_text': self.raw_text,
            'engine': self.engine,
            'detection': self.detection.to_dict() if self.detection else None,
            'crop_box': list(self.crop_box) if self.crop_box else None,
            'processing_time_ms': round(self.processing_time_ms, 2),
        }

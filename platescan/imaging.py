"""
Image Preparation

Letterbox resizing into model input tensors, inverse mapping of detection
boxes back onto the source image, and plate binarization for the text engine.
"""

import math
from typing import Tuple

import cv2
import numpy as np

from .exceptions import TensorPrepFailure
from .types import Box, LetterboxTransform, PreparedTensor, RasterImage

BLACK = (0, 0, 0)
WHITE = (255, 255, 255)

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def letterbox(
    image: RasterImage,
    width: int,
    height: int,
    fill: Tuple[int, int, int] = BLACK
) -> Tuple[np.ndarray, LetterboxTransform]:
    """
    Resize an image to fit ``width`` x ``height`` preserving aspect ratio.

    The scaled image is centered on a canvas filled with ``fill``.

    Returns:
        Tuple of (RGB canvas as HxWx3 uint8 array, transform record).
    """
    if image.width <= 0 or image.height <= 0:
        raise TensorPrepFailure("Cannot letterbox a zero-size image")
    if width <= 0 or height <= 0:
        raise TensorPrepFailure(f"Invalid target size {width}x{height}")

    scale = min(width / image.width, height / image.height)
    scaled_w = min(width, max(1, _round_half_up(image.width * scale)))
    scaled_h = min(height, max(1, _round_half_up(image.height * scale)))
    pad_x = (width - scaled_w) // 2
    pad_y = (height - scaled_h) // 2

    resized = cv2.resize(
        image.to_rgb(),
        (scaled_w, scaled_h),
        interpolation=cv2.INTER_LINEAR
    )

    canvas = np.empty((height, width, 3), dtype=np.uint8)
    canvas[:] = fill
    canvas[pad_y:pad_y + scaled_h, pad_x:pad_x + scaled_w] = resized

    transform = LetterboxTransform(
        scale=scale,
        pad_x=pad_x,
        pad_y=pad_y,
        target_width=width,
        target_height=height
    )
    return canvas, transform


def prepare_tensor(
    image: RasterImage,
    width: int,
    height: int,
    channels: int = 3,
    dtype=np.uint8,
    fill: Tuple[int, int, int] = BLACK,
    channels_last: bool = False
) -> PreparedTensor:
    """
    Letterbox an image into a flat model input buffer.

    Args:
        image: Source raster.
        width: Model input width.
        height: Model input height.
        channels: 3 for RGB planes, 1 for a single luminance plane.
        dtype: ``np.uint8`` copies raw values, ``np.float32`` scales to [0, 1].
        fill: Background color of the padding.
        channels_last: Emit HxWxC instead of the default planar CxHxW.

    Returns:
        PreparedTensor whose shape excludes the batch axis.
    """
    if channels not in (1, 3):
        raise TensorPrepFailure(f"Unsupported channel count: {channels}")

    canvas, transform = letterbox(image, width, height, fill)

    if channels == 1:
        planes = (canvas.astype(np.float32) @ LUMA_WEIGHTS)[:, :, np.newaxis]
    else:
        planes = canvas

    dtype = np.dtype(dtype)
    if dtype == np.uint8:
        if planes.dtype != np.uint8:
            planes = np.clip(np.rint(planes), 0, 255).astype(np.uint8)
    elif dtype == np.float32:
        planes = planes.astype(np.float32) / 255.0
    else:
        raise TensorPrepFailure(f"Unsupported tensor element type: {dtype}")

    if channels_last:
        shape = (height, width, channels)
    else:
        planes = planes.transpose(2, 0, 1)
        shape = (channels, height, width)

    return PreparedTensor(
        data=np.ascontiguousarray(planes).ravel(),
        shape=shape,
        transform=transform
    )


def prepare_ocr_tensor(
    image: RasterImage,
    width: int,
    height: int,
    channels: int = 1,
    dtype=np.uint8,
    channels_last: bool = False
) -> PreparedTensor:
    """Letterbox a plate crop onto a white canvas for character recognition."""
    return prepare_tensor(
        image,
        width,
        height,
        channels=channels,
        dtype=dtype,
        fill=WHITE,
        channels_last=channels_last
    )


def crop_detection(
    image: RasterImage,
    box: Box,
    transform: LetterboxTransform
) -> Tuple[RasterImage, Tuple[int, int, int, int]]:
    """
    Cut a detection out of the original image.

    Undoes the letterbox padding and scaling, clamps to the image bounds and
    never produces a crop smaller than 1x1.

    Returns:
        Tuple of (cropped raster, (x, y, w, h) in original pixels).
    """
    x1, y1, x2, y2 = box
    left, top = transform.to_image(x1, y1)
    right, bottom = transform.to_image(x2, y2)

    left = min(image.width, max(0.0, left))
    right = min(image.width, max(0.0, right))
    top = min(image.height, max(0.0, top))
    bottom = min(image.height, max(0.0, bottom))

    x = min(_round_half_up(left), image.width - 1)
    y = min(_round_half_up(top), image.height - 1)
    w = min(max(1, _round_half_up(right - left)), image.width - x)
    h = min(max(1, _round_half_up(bottom - top)), image.height - y)

    return image.crop(x, y, w, h), (x, y, w, h)


def binarize_plate(image: RasterImage, upscale: int = 2) -> np.ndarray:
    """
    Produce a clean black-on-white plate image for text recognition.

    Steps:
    - Luminance with min/max contrast stretch
    - Adaptive mean threshold (15px block, bias 10)
    - 3x3 morphological close
    - Invert if the result is mostly dark
    - Nearest-neighbour upscale

    Returns:
        Grayscale uint8 array.
    """
    gray = image.luminance()
    low, high = float(gray.min()), float(gray.max())
    spread = max(1.0, high - low)
    stretched = np.clip((gray - low) / spread * 255.0, 0, 255).astype(np.uint8)

    binary = cv2.adaptiveThreshold(
        stretched,
        255,
        cv2.ADAPTIVE_THRESH_MEAN_C,
        cv2.THRESH_BINARY,
        15,
        10
    )
    binary = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, np.ones((3, 3), np.uint8))

    if binary.mean() < 127:
        binary = 255 - binary

    if upscale > 1:
        binary = cv2.resize(
            binary,
            None,
            fx=upscale,
            fy=upscale,
            interpolation=cv2.INTER_NEAREST
        )

    return binary

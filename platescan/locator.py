"""
Edge-based Plate Locator

Finds a plate-shaped region without a detector model, used by the
text-engine path.
"""

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from .types import RasterImage

logger = logging.getLogger(__name__)

EDGE_THRESHOLD = 120
MIN_AREA_FRACTION = 0.01
MIN_ASPECT = 2.0
MAX_ASPECT = 6.5
PAD_X_FRACTION = 0.08
PAD_Y_FRACTION = 0.25


def locate_plate_region(
    image: RasterImage,
    max_width: int = 640
) -> Optional[Tuple[int, int, int, int]]:
    """
    Find the largest plate-shaped cluster of strong edges.

    The frame is downscaled to ``max_width``, Sobel gradient magnitudes above
    a fixed threshold are grouped into 4-connected components, and the
    largest component whose bounding box has a plate-like aspect ratio is
    padded and mapped back to full resolution.

    Returns:
        (x, y, w, h) in original pixels, or None if nothing qualifies.
    """
    scale = max_width / image.width if image.width > max_width else 1.0
    width = max(1, round(image.width * scale))
    height = max(1, round(image.height * scale))

    gray = image.luminance()
    if scale != 1.0:
        gray = cv2.resize(gray, (width, height), interpolation=cv2.INTER_AREA)

    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    edges = (cv2.magnitude(gx, gy) > EDGE_THRESHOLD).astype(np.uint8)

    count, _, stats, _ = cv2.connectedComponentsWithStats(edges, connectivity=4)

    min_area = width * height * MIN_AREA_FRACTION
    best = None
    for label in range(1, count):
        x, y, w, h = (int(v) for v in stats[label, :4])
        area = w * h
        if area < min_area:
            continue
        aspect = w / h
        if aspect < MIN_ASPECT or aspect > MAX_ASPECT:
            continue
        if best is None or area > best[4]:
            best = (x, y, w, h, area)

    if best is None:
        logger.debug("No plate-shaped edge region found")
        return None

    x, y, w, h, _ = best
    pad_x = round(w * PAD_X_FRACTION)
    pad_y = round(h * PAD_Y_FRACTION)
    crop_x = max(0, x - pad_x)
    crop_y = max(0, y - pad_y)
    crop_w = min(width - crop_x, w + pad_x * 2)
    crop_h = min(height - crop_y, h + pad_y * 2)

    return (
        int(crop_x / scale),
        int(crop_y / scale),
        max(1, min(image.width - int(crop_x / scale), round(crop_w / scale))),
        max(1, min(image.height - int(crop_y / scale), round(crop_h / scale))),
    )

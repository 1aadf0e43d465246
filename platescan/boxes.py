"""
Box Geometry

Detector output layout classification, Intersection-over-Union and
non-maximum suppression.
"""

from enum import Enum
from typing import List, Sequence

import numpy as np

from .types import Box, Detection

# Detector heads emit at most this many values per box
MAX_BOX_CHANNELS = 10


class DetectorLayout(Enum):
    """Axis order of a detector output tensor."""

    BOXES_FIRST = 'boxes_first'        # [batch, boxes, channels]
    CHANNELS_FIRST = 'channels_first'  # [batch, channels, boxes]


def classify_detector_layout(shape: Sequence[int]) -> DetectorLayout:
    """
    Work out which axis of a detector output holds the box channels.

    The runtime does not guarantee axis order, so a short last axis
    (at most 10 values) is taken to be the per-box channel vector.
    """
    if len(shape) < 2:
        raise ValueError(f"Detector output needs at least 2 dimensions, got {tuple(shape)}")

    if shape[-1] <= MAX_BOX_CHANNELS:
        return DetectorLayout.BOXES_FIRST
    return DetectorLayout.CHANNELS_FIRST


def box_area(box: Box) -> float:
    x1, y1, x2, y2 = box
    return max(0.0, x2 - x1) * max(0.0, y2 - y1)


def iou(a: Box, b: Box) -> float:
    """Intersection-over-Union of two corner-form boxes."""
    overlap_w = min(a[2], b[2]) - max(a[0], b[0])
    overlap_h = min(a[3], b[3]) - max(a[1], b[1])
    if overlap_w <= 0 or overlap_h <= 0:
        return 0.0

    intersection = overlap_w * overlap_h
    union = max(1.0, box_area(a) + box_area(b) - intersection)
    return intersection / union


def non_max_suppression(
    detections: List[Detection],
    iou_threshold: float = 0.4
) -> List[Detection]:
    """
    Drop lower-scoring boxes that overlap a kept box.

    Args:
        detections: Candidate detections in any order.
        iou_threshold: Boxes with IoU above this are suppressed.

    Returns:
        Surviving detections, highest score first.
    """
    if not detections:
        return []

    boxes = np.array([d.box for d in detections], dtype=np.float64)
    scores = np.array([d.score for d in detections], dtype=np.float64)
    x1, y1, x2, y2 = boxes.T
    areas = np.maximum(0.0, x2 - x1) * np.maximum(0.0, y2 - y1)

    order = np.argsort(-scores, kind='stable')
    keep = []
    while order.size > 0:
        i = order[0]
        keep.append(i)
        rest = order[1:]

        overlap_w = np.minimum(x2[i], x2[rest]) - np.maximum(x1[i], x1[rest])
        overlap_h = np.minimum(y2[i], y2[rest]) - np.maximum(y1[i], y1[rest])
        intersection = np.where(
            (overlap_w > 0) & (overlap_h > 0),
            overlap_w * overlap_h,
            0.0
        )
        union = np.maximum(1.0, areas[i] + areas[rest] - intersection)

        order = rest[intersection / union <= iou_threshold]

    return [detections[i] for i in keep]

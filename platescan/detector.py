"""
License Plate Detector

Runs the ONNX plate detector and decodes its raw output into scored boxes.
"""

import asyncio
import logging
import math
from concurrent.futures import Executor
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .boxes import DetectorLayout, classify_detector_layout, non_max_suppression
from .exceptions import DecodeShapeMismatch
from .imaging import BLACK, prepare_tensor
from .sessions import DETECTOR, SessionCache
from .types import Detection, LetterboxTransform, RasterImage

logger = logging.getLogger(__name__)


def sigmoid(values: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(values, -80.0, 80.0)))


def decode_detections(
    output: np.ndarray,
    shape: Sequence[int],
    input_width: int,
    input_height: int,
    score_threshold: float = 0.3,
    iou_threshold: float = 0.4,
    normalized_limit: float = 1.5,
    sample_size: int = 50
) -> List[Detection]:
    """
    Decode a raw detector output buffer.

    Args:
        output: Flat output buffer.
        shape: Declared output shape, ``[batch, a, b]`` with unknown axis order.
        input_width: Width of the tensor fed to the model.
        input_height: Height of the tensor fed to the model.
        score_threshold: Minimum objectness x class score.
        iou_threshold: Overlap above which boxes are suppressed.
        normalized_limit: Coordinates at or below this magnitude (over the
            sampled candidates) are treated as fractions of the input size.
        sample_size: Number of leading candidates sampled for that check.

    Returns:
        Detections in tensor coordinates, highest score first.
    """
    data = np.asarray(output, dtype=np.float32).ravel()
    shape = tuple(int(d) for d in shape)
    if data.size != math.prod(shape):
        raise DecodeShapeMismatch(
            f"Detector buffer of {data.size} values does not match shape {shape}"
        )

    layout = classify_detector_layout(shape)
    rows, cols = shape[-2], shape[-1]
    grid = data[:rows * cols].reshape(rows, cols)
    candidates = grid if layout is DetectorLayout.BOXES_FIRST else grid.T

    num_boxes, num_channels = candidates.shape
    if num_boxes == 0:
        return []
    if num_channels < 4:
        logger.warning(f"Detector output has only {num_channels} channels per box")
        return []

    coords = candidates[:, :4]
    if np.abs(coords[:sample_size]).max() <= normalized_limit:
        coords = coords * np.array(
            [input_width, input_height, input_width, input_height],
            dtype=np.float32
        )

    objectness = sigmoid(candidates[:, 4]) if num_channels > 4 else np.ones(num_boxes)
    class_score = sigmoid(candidates[:, 5]) if num_channels > 5 else np.ones(num_boxes)
    scores = objectness * class_score

    cx, cy = coords[:, 0], coords[:, 1]
    half_w, half_h = np.abs(coords[:, 2]) / 2, np.abs(coords[:, 3]) / 2
    boxes = np.stack([cx - half_w, cy - half_h, cx + half_w, cy + half_h], axis=1)

    detections = [
        Detection(box=tuple(float(v) for v in boxes[i]), score=float(scores[i]))
        for i in np.flatnonzero(scores >= score_threshold)
    ]

    logger.debug(
        f"Detector layout {layout.value}: {num_boxes} candidates, "
        f"{len(detections)} above {score_threshold}"
    )

    return non_max_suppression(detections, iou_threshold)


class PlateDetector:
    """ONNX plate detector with letterboxed input."""

    def __init__(
        self,
        sessions: SessionCache,
        confidence_threshold: float = 0.3,
        iou_threshold: float = 0.4,
        normalized_limit: float = 1.5,
        sample_size: int = 50,
        input_size: int = 640,
        executor: Optional[Executor] = None
    ):
        """
        Initialize the plate detector.

        Args:
            sessions: Cache providing the detector session.
            confidence_threshold: Minimum combined score for detections (0-1).
            iou_threshold: NMS overlap threshold.
            normalized_limit: Threshold of the normalized-coordinate heuristic.
            sample_size: Candidates sampled by that heuristic.
            input_size: Square input size used when the model shape is symbolic.
            executor: Executor running the blocking inference call.
        """
        self.sessions = sessions
        self.confidence_threshold = confidence_threshold
        self.iou_threshold = iou_threshold
        self.normalized_limit = normalized_limit
        self.sample_size = sample_size
        self.input_size = input_size
        self._executor = executor

    async def detect(
        self,
        image: RasterImage
    ) -> Tuple[List[Detection], LetterboxTransform]:
        """
        Detect plates in an image.

        Returns:
            Tuple of (detections in tensor space, letterbox transform used).
        """
        model = await self.sessions.get(DETECTOR)
        width, height, channels, channels_last = model.input_geometry(
            self.input_size, self.input_size
        )

        tensor = prepare_tensor(
            image,
            width,
            height,
            channels=channels,
            dtype=model.element_type,
            fill=BLACK,
            channels_last=channels_last
        )

        loop = asyncio.get_running_loop()
        output = await loop.run_in_executor(self._executor, model.run, tensor.as_batch())

        detections = decode_detections(
            output.ravel(),
            output.shape,
            width,
            height,
            score_threshold=self.confidence_threshold,
            iou_threshold=self.iou_threshold,
            normalized_limit=self.normalized_limit,
            sample_size=self.sample_size
        )
        return detections, tensor.transform

    def set_confidence_threshold(self, threshold: float) -> None:
        """Update the confidence threshold."""
        self.confidence_threshold = max(0.0, min(1.0, threshold))
        logger.info(f"Confidence threshold set to: {self.confidence_threshold}")

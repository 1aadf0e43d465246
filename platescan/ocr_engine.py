"""
License Plate OCR

Two recognizers:
- CharGridOCR decodes a fixed-slot character-grid ONNX model
- TextEngineOCR runs EasyOCR on a binarized plate crop
"""

import asyncio
import logging
import math
from concurrent.futures import Executor
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import easyocr
import numpy as np
import torch

from .exceptions import DecodeShapeMismatch
from .imaging import binarize_plate, prepare_ocr_tensor
from .plate_text import extract_plate
from .sessions import OCR, SessionCache
from .types import DecodedText, RasterImage

logger = logging.getLogger(__name__)

PLATE_CHARS = '0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ'
PAD_CHAR = '_'
PLATE_ALPHABET = PLATE_CHARS + PAD_CHAR


class OcrLayout(Enum):
    """Axis order of a character-grid output tensor."""

    SLOTS_FIRST = 'slots_first'      # [..., slots, classes]
    CLASSES_FIRST = 'classes_first'  # [..., classes, slots]
    UNKNOWN = 'unknown'


def classify_ocr_layout(shape: Sequence[int], alphabet_size: int) -> OcrLayout:
    """Locate the class axis of a character-grid output by its length."""
    if len(shape) >= 1 and shape[-1] == alphabet_size:
        return OcrLayout.SLOTS_FIRST
    if len(shape) >= 2 and shape[-2] == alphabet_size:
        return OcrLayout.CLASSES_FIRST
    return OcrLayout.UNKNOWN


def decode_character_grid(
    output: np.ndarray,
    shape: Sequence[int],
    alphabet: str = PLATE_ALPHABET,
    pad_char: str = PAD_CHAR,
    expected_slots: int = 9
) -> DecodedText:
    """
    Decode per-slot class scores into plate text.

    Each slot takes its argmax class. Slot confidence is the softmax
    probability of that class, ``1 / sum(exp(s - max))``. Padding slots emit
    no character but still count toward the average confidence.

    Args:
        output: Flat output buffer.
        shape: Declared output shape.
        alphabet: Class index to character mapping.
        pad_char: Character of the padding class.
        expected_slots: Slot count used when the layout cannot be identified.

    Returns:
        DecodedText with confidence as a percentage, or None for zero slots.
    """
    data = np.asarray(output, dtype=np.float32).ravel()
    shape = tuple(int(d) for d in shape)
    if data.size != math.prod(shape):
        raise DecodeShapeMismatch(
            f"OCR buffer of {data.size} values does not match shape {shape}"
        )

    num_classes = len(alphabet)
    layout = classify_ocr_layout(shape, num_classes)

    if layout is OcrLayout.SLOTS_FIRST:
        scores = data.reshape(-1, num_classes)
    elif layout is OcrLayout.CLASSES_FIRST:
        num_slots = shape[-1]
        if num_slots == 0:
            return DecodedText(text='', confidence=None)
        scores = data[:num_classes * num_slots].reshape(num_classes, num_slots).T
    else:
        num_slots = min(expected_slots, data.size // num_classes)
        logger.warning(
            f"OCR output shape {shape} has no axis of {num_classes} classes; "
            f"decoding {num_slots} slots as slot-major"
        )
        scores = data[:num_slots * num_classes].reshape(num_slots, num_classes)

    if scores.shape[0] == 0:
        return DecodedText(text='', confidence=None)

    best = scores.argmax(axis=1)
    top = scores.max(axis=1, keepdims=True)
    slot_confidence = 1.0 / np.exp(scores - top).sum(axis=1)

    text = ''.join(
        alphabet[i] for i in best if alphabet[i] != pad_char
    )
    return DecodedText(text=text, confidence=float(slot_confidence.mean() * 100))


class CharGridOCR:
    """Character-grid ONNX recognizer."""

    def __init__(
        self,
        sessions: SessionCache,
        slots: int = 9,
        alphabet: str = PLATE_ALPHABET,
        pad_char: str = PAD_CHAR,
        input_width: int = 140,
        input_height: int = 70,
        executor: Optional[Executor] = None
    ):
        self.sessions = sessions
        self.slots = slots
        self.alphabet = alphabet
        self.pad_char = pad_char
        self.input_width = input_width
        self.input_height = input_height
        self._executor = executor

    async def read(self, plate_image: RasterImage) -> DecodedText:
        model = await self.sessions.get(OCR)
        width, height, channels, channels_last = model.input_geometry(
            self.input_width, self.input_height, default_channels=1
        )

        tensor = prepare_ocr_tensor(
            plate_image,
            width,
            height,
            channels=channels,
            dtype=model.element_type,
            channels_last=channels_last
        )

        loop = asyncio.get_running_loop()
        output = await loop.run_in_executor(self._executor, model.run, tensor.as_batch())

        return decode_character_grid(
            output.ravel(),
            output.shape,
            alphabet=self.alphabet,
            pad_char=self.pad_char,
            expected_slots=self.slots
        )


class TextEngineOCR:
    """
    EasyOCR-based plate reader.

    Reads the binarized plate first and falls back to the raw crop when the
    first pass yields nothing plate-shaped.
    """

    def __init__(
        self,
        languages: List[str] = None,
        use_gpu: bool = True,
        model_storage_directory: Optional[str] = None,
        reader_factory: Optional[Callable] = None
    ):
        """
        Initialize the text engine. The EasyOCR reader is created on first use.

        Args:
            languages: EasyOCR language codes. Default: ['en'].
            use_gpu: Whether to use GPU acceleration when CUDA is available.
            model_storage_directory: Custom directory for EasyOCR models.
            reader_factory: Callable building the reader, for testing.
        """
        self.languages = languages or ['en']
        self.use_gpu = use_gpu and torch.cuda.is_available()
        self.model_storage_directory = model_storage_directory
        self._reader_factory = reader_factory or easyocr.Reader
        self._reader = None

    def _get_reader(self):
        if self._reader is None:
            logger.info(
                f"Initializing EasyOCR with languages: {self.languages} (GPU: {self.use_gpu})"
            )
            self._reader = self._reader_factory(
                self.languages,
                gpu=self.use_gpu,
                model_storage_directory=self.model_storage_directory,
                verbose=False
            )
        return self._reader

    def read(self, plate_image: RasterImage) -> DecodedText:
        """
        Read plate text from a cropped plate.

        Returns:
            DecodedText; confidence is None when no pass found a plate.
        """
        text = ''
        for processed in (binarize_plate(plate_image), plate_image.to_bgr()):
            text, confidence = self._recognize(processed)
            if extract_plate(text):
                return DecodedText(text=text, confidence=confidence)

        return DecodedText(text=text, confidence=None)

    def _recognize(self, image: np.ndarray) -> Tuple[str, Optional[float]]:
        try:
            results = self._get_reader().readtext(image, allowlist=PLATE_CHARS)
        except Exception as e:
            logger.error(f"OCR error: {e}")
            return '', None

        if not results:
            return '', None

        texts = [text for _, text, _ in results]
        confidences = [conf for _, _, conf in results]
        return ' '.join(texts), sum(confidences) / len(confidences) * 100

    def close(self) -> None:
        """Release the EasyOCR reader and any cached GPU memory."""
        if self._reader is None:
            return
        self._reader = None
        if self.use_gpu:
            torch.cuda.empty_cache()
        logger.info("EasyOCR reader released")

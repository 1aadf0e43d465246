"""
Shared fixtures: synthetic frames and stand-in ONNX sessions.
"""

import time

import numpy as np
import pytest

from platescan.ocr_engine import PLATE_ALPHABET
from platescan.pipeline import PlateScanner
from platescan.types import DecodedText, RasterImage

DETECTOR_PATH = 'models/test_detector.onnx'
OCR_PATH = 'models/test_ocr.onnx'


class FakeNode:
    def __init__(self, name, shape, type_='tensor(float)'):
        self.name = name
        self.shape = shape
        self.type = type_


class FakeSession:
    """Mimics the parts of onnxruntime.InferenceSession the scanner uses."""

    def __init__(self, output, input_shape, input_type='tensor(float)', delay=0.0):
        self.output = np.asarray(output, dtype=np.float32)
        self.input_shape = input_shape
        self.input_type = input_type
        self.delay = delay
        self.feeds = []

    def get_inputs(self):
        return [FakeNode('images', self.input_shape, self.input_type)]

    def get_outputs(self):
        return [FakeNode('output0', list(self.output.shape))]

    def run(self, output_names, feeds):
        self.feeds.append(feeds)
        if self.delay:
            time.sleep(self.delay)
        return [self.output]


class FakeSessionFactory:
    """session_factory replacement keyed by model path."""

    def __init__(self, sessions):
        self.sessions = sessions
        self.calls = []

    def __call__(self, path, providers):
        self.calls.append(path)
        return self.sessions[path]


class FakeTextEngine:
    def __init__(self, decoded):
        self.decoded = decoded
        self.closed = False
        self.crops = []

    def read(self, plate_image):
        self.crops.append(plate_image)
        return self.decoded

    def close(self):
        self.closed = True


def detector_output(boxes, num_candidates=20, layout='boxes_first'):
    """
    Build a detector output with the given (cx, cy, w, h, objectness_logit) rows.

    Remaining candidates get a strongly negative objectness.
    """
    candidates = np.zeros((num_candidates, 5), dtype=np.float32)
    candidates[:, 4] = -10.0
    for i, row in enumerate(boxes):
        candidates[i] = row

    if layout == 'boxes_first':
        return candidates[np.newaxis]
    return candidates.T[np.newaxis]


def grid_logits(text, slots=9, margin=10.0):
    """One logit per slot raised by ``margin`` for each character of ``text``."""
    logits = np.zeros((slots, len(PLATE_ALPHABET)), dtype=np.float32)
    for slot, char in enumerate(text.ljust(slots, '_')):
        logits[slot, PLATE_ALPHABET.index(char)] = margin
    return logits


@pytest.fixture
def frame():
    """1280x720 gray frame with a light plate-like patch."""
    bgr = np.full((720, 1280, 3), 90, dtype=np.uint8)
    bgr[300:420, 440:840] = 230
    bgr[340:380, 480:800] = 20
    return RasterImage.from_bgr(bgr)


@pytest.fixture
def detector_session():
    # One plate centered at (320, 320) in the 640x640 letterboxed tensor
    return FakeSession(
        detector_output([(320, 320, 200, 60, 5.0)]),
        input_shape=[1, 3, 640, 640]
    )


@pytest.fixture
def ocr_session():
    return FakeSession(
        grid_logits('LM22XPT')[np.newaxis],
        input_shape=[1, 1, 70, 140],
        input_type='tensor(uint8)'
    )


@pytest.fixture
def session_factory(detector_session, ocr_session):
    return FakeSessionFactory({
        DETECTOR_PATH: detector_session,
        OCR_PATH: ocr_session,
    })


@pytest.fixture
def text_engine():
    return FakeTextEngine(DecodedText(text='LM22 XPT', confidence=88.0))


@pytest.fixture
def scanner(session_factory, text_engine):
    scanner = PlateScanner(
        detector_model_path=DETECTOR_PATH,
        ocr_model_path=OCR_PATH,
        use_gpu=False,
        session_factory=session_factory,
        text_engine=text_engine
    )
    yield scanner
    scanner.close()

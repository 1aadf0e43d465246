"""
Tests for the plate scan pipeline

Tests end-to-end scans over stand-in sessions, the scan timeout, the
single-flight guard and frame loading.
"""

import asyncio
import io

import cv2
import numpy as np
import pytest

from conftest import (
    DETECTOR_PATH,
    OCR_PATH,
    FakeSession,
    FakeSessionFactory,
    FakeTextEngine,
    detector_output,
    grid_logits,
)
from platescan.exceptions import (
    CameraUnavailable,
    ModelUnavailable,
    NoDetectionFound,
    ScanBusy,
    ScanTimeout,
    TensorPrepFailure,
)
from platescan.pipeline import PlateScanner
from platescan.types import DecodedText


class FakeSource:
    def __init__(self, frame):
        self.frame = frame

    def get_frame(self):
        return self.frame


def build_scanner(detector_session=None, ocr_session=None, **kwargs):
    sessions = {}
    if detector_session is not None:
        sessions[DETECTOR_PATH] = detector_session
    if ocr_session is not None:
        sessions[OCR_PATH] = ocr_session
    kwargs.setdefault('text_engine', FakeTextEngine(DecodedText('', None)))
    return PlateScanner(
        detector_model_path=DETECTOR_PATH,
        ocr_model_path=OCR_PATH,
        use_gpu=False,
        session_factory=FakeSessionFactory(sessions),
        **kwargs
    )


class TestDetectPlate:
    """Test the grid recognition path"""

    def test_successful_scan(self, scanner, frame):
        result = asyncio.run(scanner.detect_plate(frame))

        assert result.plate_text == 'LM22XPT'
        assert result.raw_text == 'LM22XPT'
        assert result.engine == 'grid'
        assert result.confidence > 99.0
        assert result.crop_box == (440, 300, 400, 120)
        assert (result.crop.width, result.crop.height) == (400, 120)
        assert result.detection.box == pytest.approx((220, 290, 420, 350))
        assert result.processing_time_ms >= 0

    def test_crop_holds_plate_pixels(self, scanner, frame):
        result = asyncio.run(scanner.detect_plate(frame))

        # Plate border is light, centre strip is dark
        assert result.crop.pixels[0, 0, 0] == 230
        assert result.crop.pixels[60, 200, 0] == 20

    def test_sessions_created_once(self, scanner, session_factory, frame):
        asyncio.run(scanner.detect_plate(frame))
        asyncio.run(scanner.detect_plate(frame))

        assert sorted(session_factory.calls) == sorted([DETECTOR_PATH, OCR_PATH])

    def test_result_dict(self, scanner, frame):
        payload = asyncio.run(scanner.detect_plate(frame)).to_dict()

        assert payload['plate_text'] == 'LM22XPT'
        assert payload['crop_box'] == [440, 300, 400, 120]
        assert payload['detection']['bbox'] == [220.0, 290.0, 420.0, 350.0]

    def test_no_detection(self, ocr_session, frame):
        scanner = build_scanner(
            FakeSession(detector_output([]), [1, 3, 640, 640]),
            ocr_session
        )

        with pytest.raises(NoDetectionFound) as exc_info:
            asyncio.run(scanner.detect_plate(frame))

        assert exc_info.value.code == 'NO_DETECTION'
        assert 'No plate detected' in exc_info.value.message
        assert not scanner.is_busy
        scanner.close()

    def test_all_padding_is_no_detection(self, detector_session, frame):
        scanner = build_scanner(
            detector_session,
            FakeSession(grid_logits('')[np.newaxis], [1, 1, 70, 140], 'tensor(uint8)')
        )

        with pytest.raises(NoDetectionFound):
            asyncio.run(scanner.detect_plate(frame))
        scanner.close()

    def test_unconfigured_model(self, frame):
        scanner = PlateScanner(
            use_gpu=False,
            text_engine=FakeTextEngine(DecodedText('', None))
        )

        with pytest.raises(ModelUnavailable):
            asyncio.run(scanner.detect_plate(frame))

        info = scanner.get_system_info()
        assert info['models']['detector'] == {'configured': False, 'loaded': False}
        scanner.close()

    def test_unknown_engine(self):
        with pytest.raises(ValueError):
            PlateScanner(engine='magic', text_engine=FakeTextEngine(None))


class TestScanBounds:
    """Test timeout and single-flight behaviour"""

    def test_timeout_then_retry(self, ocr_session, frame):
        detector = FakeSession(detector_output([(320, 320, 200, 60, 5.0)]), [1, 3, 640, 640], delay=0.5)
        scanner = build_scanner(detector, ocr_session, scan_timeout=0.05)

        with pytest.raises(ScanTimeout) as exc_info:
            asyncio.run(scanner.detect_plate(frame))
        assert exc_info.value.code == 'SCAN_TIMEOUT'
        assert not scanner.is_busy

        detector.delay = 0.0
        scanner.scan_timeout = 5.0
        result = asyncio.run(scanner.detect_plate(frame))

        assert result.plate_text == 'LM22XPT'
        scanner.close()

    def test_concurrent_scan_is_busy(self, ocr_session, frame):
        detector = FakeSession(detector_output([(320, 320, 200, 60, 5.0)]), [1, 3, 640, 640], delay=0.1)
        scanner = build_scanner(detector, ocr_session)

        async def both():
            return await asyncio.gather(
                scanner.detect_plate(frame),
                scanner.detect_plate(frame),
                return_exceptions=True
            )

        first, second = asyncio.run(both())

        assert first.plate_text == 'LM22XPT'
        assert isinstance(second, ScanBusy)
        assert not scanner.is_busy
        scanner.close()


class TestScan:
    """Test capture-driven scans"""

    def test_scan_from_source(self, scanner, frame):
        capturer = scanner.capturer(FakeSource(frame.to_bgr()))

        result = asyncio.run(scanner.scan(capturer))

        assert result.plate_text == 'LM22XPT'
        assert result.crop_box == (440, 300, 400, 120)

    def test_oversized_frame_is_bounded(self, scanner, frame):
        big = cv2.resize(frame.to_bgr(), (2560, 1440), interpolation=cv2.INTER_NEAREST)
        capturer = scanner.capturer(FakeSource(big), max_size=1280)

        result = asyncio.run(scanner.scan(capturer))

        assert result.crop_box == (440, 300, 400, 120)

    def test_missing_frame(self, scanner):
        capturer = scanner.capturer(FakeSource(None))

        with pytest.raises(CameraUnavailable) as exc_info:
            asyncio.run(scanner.scan(capturer))

        assert exc_info.value.message == 'Unable to access the camera.'
        assert not scanner.is_busy


class TestTextEngine:
    """Test the locator and EasyOCR path"""

    def test_text_engine_scan(self, text_engine, frame):
        scanner = build_scanner(engine='text', text_engine=text_engine)

        result = asyncio.run(scanner.detect_plate(frame))

        assert result.plate_text == 'LM22XPT'
        assert result.raw_text == 'LM22 XPT'
        assert result.confidence == 88.0
        assert result.engine == 'text'
        assert result.detection is None
        assert len(text_engine.crops) == 1
        scanner.close()
        assert text_engine.closed

    def test_text_engine_no_plate(self, frame):
        scanner = build_scanner(
            engine='text',
            text_engine=FakeTextEngine(DecodedText('??', None))
        )

        with pytest.raises(NoDetectionFound):
            asyncio.run(scanner.detect_plate(frame))
        scanner.close()


class TestLoadImage:
    """Test frame loading"""

    def test_from_array(self):
        image = PlateScanner.load_image(np.zeros((10, 20, 3), dtype=np.uint8))

        assert (image.width, image.height) == (20, 10)

    def test_from_file_object(self, frame):
        ok, buffer = cv2.imencode('.png', frame.to_bgr())

        image = PlateScanner.load_image(io.BytesIO(buffer.tobytes()))

        assert (image.width, image.height) == (1280, 720)

    def test_from_path(self, tmp_path, frame):
        path = tmp_path / 'frame.png'
        cv2.imwrite(str(path), frame.to_bgr())

        image = PlateScanner.load_image(path)

        assert image.width == 1280

    @pytest.mark.parametrize('bad', [b'', b'not an image'])
    def test_undecodable_bytes(self, bad):
        with pytest.raises(TensorPrepFailure):
            PlateScanner.load_image(io.BytesIO(bad))

    def test_unsupported_type(self):
        with pytest.raises(TensorPrepFailure):
            PlateScanner.load_image(42)

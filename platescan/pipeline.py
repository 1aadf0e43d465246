"""
Plate Scan Pipeline

Combines detection, cropping and OCR into a single bounded scan.
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Tuple, Union

import cv2
import numpy as np

from .capture import FrameCapturer
from .detector import PlateDetector
from .exceptions import NoDetectionFound, ScanBusy, ScanTimeout, TensorPrepFailure
from .imaging import crop_detection
from .locator import locate_plate_region
from .ocr_engine import CharGridOCR, TextEngineOCR
from .plate_text import extract_plate, normalize_plate
from .sessions import DETECTOR, OCR, SessionCache, create_onnx_session, select_providers
from .types import RasterImage, ScanResult

logger = logging.getLogger(__name__)

ENGINES = ('grid', 'text')


class PlateScanner:
    """
    Plate recognition orchestrator.

    Runs capture, detection, cropping, OCR and text extraction in sequence,
    one scan at a time, with the whole attempt bounded by ``scan_timeout``.
    """

    def __init__(
        self,
        detector_model_path: Optional[str] = None,
        ocr_model_path: Optional[str] = None,
        engine: str = 'grid',
        confidence_threshold: float = 0.3,
        iou_threshold: float = 0.4,
        normalized_limit: float = 1.5,
        ocr_slots: int = 9,
        scan_timeout: float = 15.0,
        use_gpu: bool = True,
        io_names: Optional[Dict[str, Tuple[Optional[str], Optional[str]]]] = None,
        ocr_languages: List[str] = None,
        session_factory=create_onnx_session,
        text_engine: Optional[TextEngineOCR] = None,
        max_workers: int = 2
    ):
        """
        Initialize the scanner. Models are loaded on first use.

        Args:
            detector_model_path: Path to the ONNX plate detector.
            ocr_model_path: Path to the ONNX character-grid OCR model.
            engine: 'grid' (detector + character grid) or 'text' (edge locator + EasyOCR).
            confidence_threshold: Minimum detection score.
            iou_threshold: NMS overlap threshold.
            normalized_limit: Threshold of the normalized-coordinate heuristic.
            ocr_slots: Character slots of the OCR model.
            scan_timeout: Seconds before an attempt is abandoned.
            use_gpu: Whether to use GPU acceleration when available.
            io_names: Optional {model: (input_name, output_name)} overrides.
            ocr_languages: Languages for the text engine (default: English).
            session_factory: Callable(path, providers) creating a session.
            text_engine: Prebuilt text engine, mainly for testing.
            max_workers: Threads available for blocking work.
        """
        if engine not in ENGINES:
            raise ValueError(f"Unknown engine '{engine}', expected one of {ENGINES}")

        self.engine = engine
        self.use_gpu = use_gpu
        self.scan_timeout = scan_timeout
        self.confidence_threshold = confidence_threshold

        logger.info(f"Initializing plate scanner (engine: {engine})")

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix='platescan'
        )
        self._busy = False

        self.sessions = SessionCache(
            {DETECTOR: detector_model_path, OCR: ocr_model_path},
            io_names=io_names,
            use_gpu=use_gpu,
            executor=self._executor,
            session_factory=session_factory
        )

        self.detector = PlateDetector(
            self.sessions,
            confidence_threshold=confidence_threshold,
            iou_threshold=iou_threshold,
            normalized_limit=normalized_limit,
            executor=self._executor
        )

        self.ocr = CharGridOCR(
            self.sessions,
            slots=ocr_slots,
            executor=self._executor
        )

        self.text_engine = text_engine or TextEngineOCR(
            languages=ocr_languages or ['en'],
            use_gpu=use_gpu
        )

    @property
    def is_busy(self) -> bool:
        return self._busy

    def capturer(self, source, max_size: int = 1280) -> FrameCapturer:
        """Frame capturer sharing this scanner's worker threads."""
        return FrameCapturer(source, max_size=max_size, executor=self._executor)

    async def detect_plate(self, frame: RasterImage) -> ScanResult:
        """
        Recognize the plate in a frame.

        Raises:
            NoDetectionFound: No box above threshold or no plate-shaped text.
            ScanTimeout: The attempt exceeded ``scan_timeout``.
            ScanBusy: Another scan is in flight.
        """
        return await self._bounded(self._recognize(frame))

    async def scan(self, capturer: FrameCapturer) -> ScanResult:
        """Grab a frame from a capturer and recognize its plate."""
        return await self._bounded(self._capture_and_recognize(capturer))

    async def _bounded(self, work) -> ScanResult:
        if self._busy:
            work.close()
            raise ScanBusy()

        self._busy = True
        start_time = time.time()
        try:
            result = await asyncio.wait_for(work, timeout=self.scan_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Plate scan abandoned after {self.scan_timeout}s")
            raise ScanTimeout(
                f"Plate scan timed out after {self.scan_timeout:g} seconds."
            ) from None
        finally:
            self._busy = False

        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Plate {result.plate_text} read in {result.processing_time_ms:.0f} ms "
            f"(confidence: {result.confidence})"
        )
        return result

    async def _capture_and_recognize(self, capturer: FrameCapturer) -> ScanResult:
        frame = await capturer.grab()
        return await self._recognize(frame)

    async def _recognize(self, frame: RasterImage) -> ScanResult:
        if self.engine == 'text':
            return await self._recognize_text(frame)

        detections, transform = await self.detector.detect(frame)
        if not detections:
            raise NoDetectionFound()

        best = detections[0]
        crop, crop_box = crop_detection(frame, best.box, transform)

        decoded = await self.ocr.read(crop)
        plate = extract_plate(decoded.text)
        if not plate:
            logger.info(f"OCR text '{decoded.text}' contains no plate")
            raise NoDetectionFound()

        return ScanResult(
            plate_text=normalize_plate(plate),
            confidence=decoded.confidence,
            raw_text=decoded.text,
            crop=crop,
            detection=best,
            crop_box=crop_box,
            engine='grid'
        )

    async def _recognize_text(self, frame: RasterImage) -> ScanResult:
        loop = asyncio.get_running_loop()

        region = await loop.run_in_executor(self._executor, locate_plate_region, frame)
        if region is None:
            region = (0, 0, frame.width, frame.height)
        crop = frame.crop(*region)

        decoded = await loop.run_in_executor(self._executor, self.text_engine.read, crop)
        plate = extract_plate(decoded.text)
        if not plate:
            raise NoDetectionFound()

        return ScanResult(
            plate_text=normalize_plate(plate),
            confidence=decoded.confidence,
            raw_text=decoded.text,
            crop=crop,
            crop_box=region,
            engine='text'
        )

    @staticmethod
    def load_image(image_input: Union[np.ndarray, str, Path, BinaryIO]) -> RasterImage:
        """
        Load an image from an array, file path, or file-like object.

        Raises:
            TensorPrepFailure: If the image cannot be decoded.
        """
        if isinstance(image_input, np.ndarray):
            image = image_input
        elif isinstance(image_input, (str, Path)):
            image = cv2.imread(str(image_input))
        elif hasattr(image_input, 'read'):
            # File-like object (Flask FileStorage, BytesIO, etc.)
            file_bytes = image_input.read()
            nparr = np.frombuffer(file_bytes, np.uint8)
            image = cv2.imdecode(nparr, cv2.IMREAD_COLOR) if nparr.size else None
        else:
            raise TensorPrepFailure(f"Unsupported input type: {type(image_input)}")

        if image is None:
            raise TensorPrepFailure("Failed to load image")

        return RasterImage.from_bgr(image)

    def set_confidence_threshold(self, threshold: float) -> None:
        """Update detection confidence threshold."""
        self.detector.set_confidence_threshold(threshold)
        self.confidence_threshold = self.detector.confidence_threshold

    def get_system_info(self) -> Dict:
        """Get scanner and model information."""
        return {
            'engine': self.engine,
            'providers': select_providers(self.use_gpu),
            'confidence_threshold': self.confidence_threshold,
            'scan_timeout': self.scan_timeout,
            'models': {
                key: {
                    'configured': self.sessions.is_configured(key),
                    'loaded': self.sessions.is_loaded(key),
                }
                for key in (DETECTOR, OCR)
            },
            'busy': self._busy,
        }

    def close(self) -> None:
        """Release sessions, the text engine and worker threads."""
        self.sessions.close()
        self.text_engine.close()
        self._executor.shutdown(wait=False)
        logger.info("Plate scanner closed")

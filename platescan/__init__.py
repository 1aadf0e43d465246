"""
License Plate Scanning Module

This module provides:
- Letterbox tensor preparation and ONNX session caching
- Plate detection decoding with non-maximum suppression
- Character-grid OCR decoding and an EasyOCR text engine
- An asyncio pipeline producing a normalized registration per scan
"""

from .pipeline import PlateScanner
from .detector import PlateDetector
from .ocr_engine import CharGridOCR, TextEngineOCR
from .plate_text import extract_plate, normalize_plate

__all__ = [
    'PlateScanner',
    'PlateDetector',
    'CharGridOCR',
    'TextEngineOCR',
    'extract_plate',
    'normalize_plate',
]

"""
Application Configuration

Environment-based configuration for the plate scanning service.
"""

import os
from pathlib import Path


def _optional(name: str):
    value = os.environ.get(name, '').strip()
    return value or None


class Config:
    """Base configuration."""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = False
    TESTING = False

    # Upload settings
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max upload
    ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'bmp', 'webp'}

    # Models
    BASE_DIR = Path(__file__).parent.parent.parent
    MODELS_DIR = Path(os.environ.get('MODELS_DIR', str(BASE_DIR / 'models')))
    DETECTOR_MODEL_PATH = os.environ.get(
        'DETECTOR_MODEL_PATH', str(MODELS_DIR / 'plate_detector.onnx')
    )
    OCR_MODEL_PATH = os.environ.get(
        'OCR_MODEL_PATH', str(MODELS_DIR / 'plate_ocr.onnx')
    )
    DETECTOR_INPUT_NAME = _optional('DETECTOR_INPUT_NAME')
    DETECTOR_OUTPUT_NAME = _optional('DETECTOR_OUTPUT_NAME')
    OCR_INPUT_NAME = _optional('OCR_INPUT_NAME')
    OCR_OUTPUT_NAME = _optional('OCR_OUTPUT_NAME')

    # Recognition settings
    PLATE_ENGINE = os.environ.get('PLATE_ENGINE', 'grid')
    USE_GPU = os.environ.get('USE_GPU', 'true').lower() == 'true'
    DETECTION_CONFIDENCE = float(os.environ.get('DETECTION_CONFIDENCE', '0.3'))
    NMS_IOU_THRESHOLD = float(os.environ.get('NMS_IOU_THRESHOLD', '0.4'))
    NORMALIZED_COORD_LIMIT = float(os.environ.get('NORMALIZED_COORD_LIMIT', '1.5'))
    OCR_SLOTS = int(os.environ.get('OCR_SLOTS', '9'))
    OCR_LANGUAGES = os.environ.get('OCR_LANGUAGES', 'en').split(',')
    SCAN_TIMEOUT = float(os.environ.get('SCAN_TIMEOUT', '15'))

    # Camera
    CAMERA_SOURCE = _optional('CAMERA_SOURCE')
    MAX_FRAME_SIZE = int(os.environ.get('MAX_FRAME_SIZE', '1280'))

    # Vehicle registry (DVLA VES compatible)
    VEHICLE_REGISTRY_URL = _optional('VEHICLE_REGISTRY_URL')
    VEHICLE_REGISTRY_API_KEY = _optional('VEHICLE_REGISTRY_API_KEY')
    REGISTRY_TIMEOUT = float(os.environ.get('REGISTRY_TIMEOUT', '10'))


class DevelopmentConfig(Config):
    """Development configuration."""

    DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""

    DEBUG = False


class TestingConfig(Config):
    """Testing configuration."""

    TESTING = True
    DEBUG = True

    # No model files or camera in tests
    DETECTOR_MODEL_PATH = None
    OCR_MODEL_PATH = None
    CAMERA_SOURCE = None
    VEHICLE_REGISTRY_URL = None
    VEHICLE_REGISTRY_API_KEY = None

    # Disable GPU for faster tests
    USE_GPU = False


# Configuration dictionary
config_by_name = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}

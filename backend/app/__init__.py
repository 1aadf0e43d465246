"""
Plate Scanning Service - Flask Application Factory

Initializes the Flask app with the plate scanner, camera, registry client
and blueprints.
"""

import atexit
import logging
import os
import threading

from flask import Flask, jsonify
from flask_cors import CORS

from platescan.exceptions import PlateScanError
from platescan.pipeline import PlateScanner
from platescan.sessions import DETECTOR, OCR

ERROR_STATUS = {
    'CAMERA_UNAVAILABLE': 503,
    'TENSOR_PREP_FAILURE': 400,
    'NO_DETECTION': 422,
    'SCAN_TIMEOUT': 504,
    'SCAN_BUSY': 409,
    'DECODE_SHAPE_MISMATCH': 500,
    'MODEL_UNAVAILABLE': 503,
}


def create_app(config_name: str = None, scanner: PlateScanner = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration to use ('development', 'production', 'testing').
        scanner: Prebuilt scanner, mainly for testing.

    Returns:
        Configured Flask application.
    """
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app = Flask(__name__)

    from app.config import config_by_name
    app.config.from_object(config_by_name[config_name])

    setup_logging(app)

    CORS(app, resources={r"/api/*": {"origins": "*"}})

    init_scanner(app, scanner)
    init_services(app)

    register_blueprints(app)
    register_error_handlers(app)

    atexit.register(shutdown_services, app)

    app.logger.info(f"Plate scanning service initialized in {config_name} mode")

    return app


def setup_logging(app: Flask) -> None:
    """Configure application logging."""
    log_level = logging.DEBUG if app.config['DEBUG'] else logging.INFO

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Reduce noise from some libraries
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def init_scanner(app: Flask, scanner: PlateScanner = None) -> None:
    """Build the plate scanner; model sessions load on the first scan."""
    if scanner is None:
        cfg = app.config
        scanner = PlateScanner(
            detector_model_path=cfg.get('DETECTOR_MODEL_PATH'),
            ocr_model_path=cfg.get('OCR_MODEL_PATH'),
            engine=cfg.get('PLATE_ENGINE', 'grid'),
            confidence_threshold=cfg.get('DETECTION_CONFIDENCE', 0.3),
            iou_threshold=cfg.get('NMS_IOU_THRESHOLD', 0.4),
            normalized_limit=cfg.get('NORMALIZED_COORD_LIMIT', 1.5),
            ocr_slots=cfg.get('OCR_SLOTS', 9),
            scan_timeout=cfg.get('SCAN_TIMEOUT', 15.0),
            use_gpu=cfg.get('USE_GPU', True),
            io_names={
                DETECTOR: (cfg.get('DETECTOR_INPUT_NAME'), cfg.get('DETECTOR_OUTPUT_NAME')),
                OCR: (cfg.get('OCR_INPUT_NAME'), cfg.get('OCR_OUTPUT_NAME')),
            },
            ocr_languages=cfg.get('OCR_LANGUAGES')
        )

    app.scanner = scanner
    # One scan at a time per process; extra requests get SCAN_BUSY
    app.scan_lock = threading.Lock()


def init_services(app: Flask) -> None:
    """Create the camera and vehicle registry services."""
    from app.services.camera_service import CameraService
    from app.services.registry_service import VehicleRegistryClient

    app.camera_service = CameraService()
    source = app.config.get('CAMERA_SOURCE')
    if source:
        app.camera_service.add_camera(CameraService.DEFAULT, source)

    app.registry = VehicleRegistryClient(
        app.config.get('VEHICLE_REGISTRY_URL'),
        app.config.get('VEHICLE_REGISTRY_API_KEY'),
        timeout=app.config.get('REGISTRY_TIMEOUT', 10.0)
    )


def register_blueprints(app: Flask) -> None:
    """Register Flask blueprints."""
    from app.routes.api import api_bp
    from app.routes.stream import stream_bp

    app.register_blueprint(api_bp, url_prefix='/api')
    app.register_blueprint(stream_bp, url_prefix='/stream')


def error_response(code: str, message: str, status: int):
    return jsonify({
        'success': False,
        'error': {'code': code, 'message': message}
    }), status


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""

    @app.errorhandler(PlateScanError)
    def scan_error(error):
        status = ERROR_STATUS.get(error.code, 500)
        if not error.recoverable:
            app.logger.error(f"Scan failed: {error.code}: {error.message}")
        elif status >= 500:
            app.logger.warning(f"Scan failed: {error.code}: {error.message}")
        return error_response(error.code, error.message, status)

    @app.errorhandler(400)
    def bad_request(error):
        return error_response('BAD_REQUEST', str(error), 400)

    @app.errorhandler(404)
    def not_found(error):
        return error_response('NOT_FOUND', 'Resource not found', 404)

    @app.errorhandler(500)
    def internal_error(error):
        return error_response('INTERNAL_ERROR', 'An internal error occurred', 500)


def shutdown_services(app: Flask) -> None:
    """Stop cameras and release model sessions."""
    app.camera_service.stop_all()
    app.scanner.close()

"""
REST API Routes

Provides endpoints for plate scanning, manual plate entry, vehicle lookup
and health.
"""

import asyncio
import base64
from datetime import datetime
from typing import Optional

import cv2
from flask import Blueprint, current_app, jsonify, request

from app import error_response
from app.services.camera_service import CameraService
from app.services.registry_service import RegistryError
from platescan.exceptions import CameraUnavailable, ScanBusy
from platescan.plate_text import normalize_plate

api_bp = Blueprint('api', __name__)


def allowed_file(filename: str) -> bool:
    """Check if file extension is allowed."""
    allowed = current_app.config.get('ALLOWED_EXTENSIONS', {'png', 'jpg', 'jpeg'})
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in allowed


def run_scan(make_scan):
    """
    Run one scan coroutine on a fresh event loop.

    Scans are serialized per process; a request arriving while another scan
    is in flight is rejected with SCAN_BUSY.
    """
    lock = current_app.scan_lock
    if not lock.acquire(blocking=False):
        raise ScanBusy()
    try:
        return asyncio.run(make_scan())
    finally:
        lock.release()


def encode_crop(crop) -> Optional[str]:
    """Encode a plate crop as a PNG data URL for display."""
    ret, buffer = cv2.imencode('.png', crop.to_bgr())
    if not ret:
        return None
    return 'data:image/png;base64,' + base64.b64encode(buffer.tobytes()).decode('ascii')


def scan_response(result):
    payload = result.to_dict()
    payload['success'] = True
    payload['crop_image'] = encode_crop(result.crop) if result.crop is not None else None
    payload['timestamp'] = datetime.utcnow().isoformat()
    return jsonify(payload)


# ============================================
# Scan Endpoints
# ============================================

@api_bp.route('/detect', methods=['POST'])
def detect_plate():
    """
    Read the plate in an uploaded image.

    Request: multipart/form-data with 'image' file
    Response: Plate text, OCR confidence, detection box and crop preview
    """
    if 'image' not in request.files:
        return error_response('NO_IMAGE', 'No image file provided', 400)

    file = request.files['image']

    if file.filename == '':
        return error_response('NO_FILENAME', 'No file selected', 400)

    if not allowed_file(file.filename):
        return error_response('INVALID_FILE', 'File type not allowed', 400)

    scanner = current_app.scanner
    frame = scanner.load_image(file)

    result = run_scan(lambda: scanner.detect_plate(frame))
    return scan_response(result)


@api_bp.route('/detect/camera', methods=['POST'])
def detect_from_camera():
    """Grab a frame from the configured camera and read its plate."""
    camera = current_app.camera_service.get_camera(CameraService.DEFAULT)
    if camera is None:
        raise CameraUnavailable('No camera configured.')

    scanner = current_app.scanner
    capturer = scanner.capturer(camera, max_size=current_app.config.get('MAX_FRAME_SIZE', 1280))

    result = run_scan(lambda: scanner.scan(capturer))
    return scan_response(result)


# ============================================
# Registration Endpoints
# ============================================

@api_bp.route('/normalize', methods=['POST'])
def normalize_registration():
    """Canonicalize a manually entered registration."""
    payload = request.get_json(silent=True) or {}
    registration = normalize_plate(str(payload.get('registration') or ''))
    return jsonify({'success': True, 'registration': registration})


@api_bp.route('/lookup', methods=['POST'])
def lookup_vehicle():
    """
    Look up vehicle details for a registration.

    Request: JSON {"registration": "LM22 XPT"}
    Response: The registry's vehicle record with its HTTP status
    """
    payload = request.get_json(silent=True) or {}

    try:
        data, status = current_app.registry.lookup(str(payload.get('registration') or ''))
    except RegistryError as e:
        return jsonify({'error': e.message}), e.status_code

    return jsonify(data), status


# ============================================
# System Endpoints
# ============================================

@api_bp.route('/health', methods=['GET'])
def health_check():
    """System health check endpoint."""
    scanner = current_app.scanner
    info = scanner.get_system_info()

    health_status = {
        'status': 'healthy',
        'timestamp': datetime.utcnow().isoformat(),
        'scanner': info,
        'cameras': current_app.camera_service.get_all_statuses(),
        'registry': 'configured' if current_app.registry.is_configured else 'not_configured'
    }

    if info['engine'] == 'grid' and not all(m['configured'] for m in info['models'].values()):
        health_status['status'] = 'degraded'

    status_code = 200 if health_status['status'] == 'healthy' else 503
    return jsonify(health_status), status_code

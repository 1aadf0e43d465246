"""
Video Streaming Routes

Live preview of the scanning camera for the capture UI.
"""

import time

import cv2
import numpy as np
from flask import Blueprint, Response, current_app, jsonify

from app.services.camera_service import CameraService

stream_bp = Blueprint('stream', __name__)


def generate_frames(camera, frame_interval: float = 1 / 15):
    """
    Generator function for the MJPEG preview.

    Args:
        camera: Running CameraStream.
        frame_interval: Seconds between emitted frames.

    Yields:
        JPEG frames as multipart response parts.
    """
    while True:
        start_time = time.time()

        frame = camera.get_frame()
        if frame is None:
            frame_bytes = create_error_frame("No signal")
        else:
            ret, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, 80])
            if not ret:
                continue
            frame_bytes = buffer.tobytes()

        yield (b'--frame\r\n'
               b'Content-Type: image/jpeg\r\n\r\n' + frame_bytes + b'\r\n')

        # Maintain frame rate
        elapsed = time.time() - start_time
        if elapsed < frame_interval:
            time.sleep(frame_interval - elapsed)


def create_error_frame(message: str) -> bytes:
    """Create a black JPEG frame with a centered message."""
    frame = np.zeros((480, 640, 3), dtype=np.uint8)

    font = cv2.FONT_HERSHEY_SIMPLEX
    text_size = cv2.getTextSize(message, font, 1, 2)[0]
    text_x = (640 - text_size[0]) // 2
    text_y = (480 + text_size[1]) // 2

    cv2.putText(frame, message, (text_x, text_y), font, 1, (255, 255, 255), 2)

    ret, buffer = cv2.imencode('.jpg', frame)
    return buffer.tobytes() if ret else b''


@stream_bp.route('/video')
def video_feed():
    """
    Live video stream endpoint.

    Returns a multipart JPEG stream for embedding in HTML.
    """
    camera = current_app.camera_service.get_camera(CameraService.DEFAULT)
    if camera is None:
        return Response(
            create_error_frame("Camera not available"),
            mimetype='image/jpeg',
            status=503
        )

    return Response(
        generate_frames(camera),
        mimetype='multipart/x-mixed-replace; boundary=frame'
    )


@stream_bp.route('/snapshot')
def snapshot():
    """
    Get a single frame snapshot from the camera.

    Returns a JPEG image.
    """
    camera = current_app.camera_service.get_camera(CameraService.DEFAULT)
    frame = camera.get_frame() if camera is not None else None

    if frame is None:
        return jsonify({
            'success': False,
            'error': {'code': 'CAMERA_UNAVAILABLE', 'message': 'Failed to capture frame'}
        }), 503

    ret, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, 95])

    if not ret:
        return jsonify({
            'success': False,
            'error': {'code': 'ENCODE_ERROR', 'message': 'Failed to encode frame'}
        }), 500

    return Response(buffer.tobytes(), mimetype='image/jpeg')

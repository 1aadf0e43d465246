"""
Camera Service

Keeps the latest frame of a live video source available for plate scans.
Supports RTSP streams, USB webcams, and video files.
"""

import cv2
import threading
import time
from datetime import datetime
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)


class CameraStream:
    """Background frame grabber for one video source."""

    def __init__(
        self,
        source: str,
        reconnect_delay: float = 5.0,
        frame_width: int = 1280,
        frame_height: int = 720
    ):
        """
        Initialize camera stream.

        Args:
            source: Video source (RTSP URL, device ID, or file path).
            reconnect_delay: Seconds to wait before reconnection attempt.
            frame_width: Requested capture width.
            frame_height: Requested capture height.
        """
        self.source = source
        self.reconnect_delay = reconnect_delay
        self.frame_width = frame_width
        self.frame_height = frame_height

        self.cap: Optional[cv2.VideoCapture] = None
        self.frame = None
        self.frame_lock = threading.Lock()

        self.is_running = False
        self.is_connected = False
        self.last_frame_time: Optional[datetime] = None
        self.error_message: Optional[str] = None

        self._thread: Optional[threading.Thread] = None

    def start(self, connect_timeout: float = 5.0) -> bool:
        """Start the capture thread and wait for the first connection."""
        if self.is_running:
            return self.is_connected

        self.is_running = True
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()

        start_time = time.time()
        while not self.is_connected and (time.time() - start_time) < connect_timeout:
            time.sleep(0.1)

        return self.is_connected

    def stop(self):
        """Stop the camera stream."""
        self.is_running = False

        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None

        self._disconnect()
        self.is_connected = False

    def get_frame(self):
        """Get a copy of the latest BGR frame, or None."""
        with self.frame_lock:
            return self.frame.copy() if self.frame is not None else None

    def _capture_loop(self):
        """Main capture loop running in background thread."""
        while self.is_running:
            try:
                if self.cap is None or not self.cap.isOpened():
                    self._connect()

                if not self.is_connected:
                    time.sleep(self.reconnect_delay)
                    continue

                ret, frame = self.cap.read()

                if ret:
                    with self.frame_lock:
                        self.frame = frame
                    self.last_frame_time = datetime.now()
                    self.error_message = None
                else:
                    logger.warning(f"Camera {self.source}: Failed to read frame")
                    self.is_connected = False
                    self._disconnect()
                    time.sleep(self.reconnect_delay)

            except cv2.error as e:
                logger.error(f"Camera {self.source} error: {e}")
                self.error_message = str(e)
                self.is_connected = False
                self._disconnect()
                time.sleep(self.reconnect_delay)

    def _open_capture(self) -> cv2.VideoCapture:
        source = self.source
        if isinstance(source, str) and source.isdigit():
            # USB webcam by device ID
            source = int(source)

        if isinstance(source, str) and source.startswith('rtsp://'):
            # RTSP stream - use FFMPEG backend with a single-frame buffer
            cap = cv2.VideoCapture(source, cv2.CAP_FFMPEG)
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        else:
            cap = cv2.VideoCapture(source)

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
        return cap

    def _connect(self):
        """Connect to camera source."""
        logger.info(f"Connecting to camera: {self.source}")

        self.cap = self._open_capture()

        if not self.cap.isOpened():
            self._fail("Could not open video source")
            return

        ret, _ = self.cap.read()
        if not ret:
            self._fail("Could not read initial frame")
            return

        self.is_connected = True
        self.error_message = None
        logger.info(f"Camera {self.source} connected successfully")

    def _fail(self, message: str):
        self.is_connected = False
        self.error_message = message
        logger.error(f"Camera {self.source} connection failed: {message}")
        self._disconnect()

    def _disconnect(self):
        """Disconnect from camera source."""
        if self.cap:
            self.cap.release()
            self.cap = None

    def get_status(self) -> dict:
        """Get camera status information."""
        return {
            'source': self.source,
            'is_running': self.is_running,
            'is_connected': self.is_connected,
            'last_frame_time': (
                self.last_frame_time.isoformat()
                if self.last_frame_time else None
            ),
            'error_message': self.error_message
        }


class CameraService:
    """Named camera streams owned by the application."""

    DEFAULT = 'default'

    def __init__(self):
        self.cameras: Dict[str, CameraStream] = {}

    def add_camera(self, camera_id: str, source: str) -> CameraStream:
        """Register a camera without starting it."""
        if camera_id in self.cameras:
            logger.warning(f"Camera {camera_id} already exists")
            return self.cameras[camera_id]

        camera = CameraStream(source)
        self.cameras[camera_id] = camera
        logger.info(f"Added camera: {camera_id} ({source})")
        return camera

    def get_camera(self, camera_id: str = DEFAULT) -> Optional[CameraStream]:
        """Return a running camera, starting it on first use."""
        camera = self.cameras.get(camera_id)
        if camera is None:
            return None

        if not camera.is_running:
            camera.start()
        return camera

    def get_all_statuses(self) -> list:
        """Get status of all cameras."""
        return [
            dict(camera_id=camera_id, **camera.get_status())
            for camera_id, camera in self.cameras.items()
        ]

    def stop_all(self):
        """Stop all cameras."""
        for camera in self.cameras.values():
            camera.stop()

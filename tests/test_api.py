"""
Tests for the HTTP API
"""

import io
import logging

import cv2
import pytest
import requests

from app import create_app
from app.services.registry_service import VehicleRegistryClient
from conftest import (
    DETECTOR_PATH,
    OCR_PATH,
    FakeSession,
    FakeSessionFactory,
    FakeTextEngine,
    detector_output,
)
from platescan.pipeline import PlateScanner
from platescan.types import DecodedText


@pytest.fixture
def app(scanner):
    return create_app('testing', scanner=scanner)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def png_bytes(frame):
    ok, buffer = cv2.imencode('.png', frame.to_bgr())
    return buffer.tobytes()


def upload(client, data, filename='frame.png'):
    return client.post(
        '/api/detect',
        data={'image': (io.BytesIO(data), filename)},
        content_type='multipart/form-data'
    )


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        return self.payload


class TestDetectEndpoint:
    """Test POST /api/detect"""

    def test_detect(self, client, png_bytes):
        response = upload(client, png_bytes)

        assert response.status_code == 200
        data = response.get_json()
        assert data['success'] is True
        assert data['plate_text'] == 'LM22XPT'
        assert data['engine'] == 'grid'
        assert data['crop_box'] == [440, 300, 400, 120]
        assert data['crop_image'].startswith('data:image/png;base64,')

    def test_no_image(self, client):
        response = client.post('/api/detect', data={}, content_type='multipart/form-data')

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'NO_IMAGE'

    def test_disallowed_extension(self, client, png_bytes):
        response = upload(client, png_bytes, filename='frame.gif')

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_FILE'

    def test_undecodable_image(self, client):
        response = upload(client, b'not an image')

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'TENSOR_PREP_FAILURE'

    def test_no_detection(self, ocr_session, png_bytes):
        scanner = PlateScanner(
            detector_model_path=DETECTOR_PATH,
            ocr_model_path=OCR_PATH,
            use_gpu=False,
            session_factory=FakeSessionFactory({
                DETECTOR_PATH: FakeSession(detector_output([]), [1, 3, 640, 640]),
                OCR_PATH: ocr_session,
            }),
            text_engine=FakeTextEngine(DecodedText('', None))
        )
        client = create_app('testing', scanner=scanner).test_client()

        response = upload(client, png_bytes)

        assert response.status_code == 422
        error = response.get_json()['error']
        assert error['code'] == 'NO_DETECTION'
        assert error['message'] == 'No plate detected. Try again with a clearer shot.'
        scanner.close()

    def test_busy(self, app, client, png_bytes):
        app.scan_lock.acquire()
        try:
            response = upload(client, png_bytes)
        finally:
            app.scan_lock.release()

        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'SCAN_BUSY'

    def test_camera_not_configured(self, client):
        response = client.post('/api/detect/camera')

        assert response.status_code == 503
        assert response.get_json()['error']['code'] == 'CAMERA_UNAVAILABLE'


class TestErrorLogging:
    """Test log levels of scan errors"""

    def test_unrecoverable_error_logged(self, client, caplog):
        with caplog.at_level(logging.WARNING):
            client.post('/api/detect/camera')

        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert any('CAMERA_UNAVAILABLE' in r.getMessage() for r in errors)

    def test_recoverable_error_not_logged_as_error(self, client, caplog):
        with caplog.at_level(logging.WARNING):
            upload(client, b'not an image')

        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    def test_recoverable_server_error_is_warning(self, app, client, png_bytes, caplog):
        app.scanner.scan_timeout = 0.0

        with caplog.at_level(logging.WARNING):
            response = upload(client, png_bytes)

        assert response.status_code == 504
        timeouts = [r for r in caplog.records if 'SCAN_TIMEOUT' in r.getMessage()]
        assert [r.levelno for r in timeouts] == [logging.WARNING]


class TestRegistrationEndpoints:
    """Test manual entry and vehicle lookup"""

    def test_normalize(self, client):
        response = client.post('/api/normalize', json={'registration': 'lm22 xpt'})

        assert response.status_code == 200
        assert response.get_json()['registration'] == 'LM22XPT'

    def test_lookup_requires_registration(self, client):
        response = client.post('/api/lookup', json={'registration': ' - '})

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Registration is required.'

    def test_lookup_not_configured(self, client):
        response = client.post('/api/lookup', json={'registration': 'LM22XPT'})

        assert response.status_code == 501

    def test_lookup_passes_response_through(self, app, client, monkeypatch):
        app.registry = VehicleRegistryClient('https://registry.test/v1/', 'secret')
        calls = []

        def fake_post(url, json=None, headers=None, timeout=None):
            calls.append((url, json, headers))
            return FakeResponse(200, {'registrationNumber': 'LM22XPT', 'make': 'FORD'})

        monkeypatch.setattr('app.services.registry_service.requests.post', fake_post)

        response = client.post('/api/lookup', json={'registration': 'lm22 xpt'})

        assert response.status_code == 200
        assert response.get_json()['make'] == 'FORD'
        assert calls == [(
            'https://registry.test/v1/vehicles',
            {'registrationNumber': 'LM22XPT'},
            {'x-api-key': 'secret'},
        )]

    def test_lookup_upstream_status(self, app, client, monkeypatch):
        app.registry = VehicleRegistryClient('https://registry.test', 'secret')
        monkeypatch.setattr(
            'app.services.registry_service.requests.post',
            lambda *args, **kwargs: FakeResponse(404, {'message': 'Vehicle not found'})
        )

        response = client.post('/api/lookup', json={'registration': 'AB12CDE'})

        assert response.status_code == 404
        assert response.get_json() == {'message': 'Vehicle not found'}

    def test_lookup_unreachable(self, app, client, monkeypatch):
        app.registry = VehicleRegistryClient('https://registry.test', 'secret')

        def fail(*args, **kwargs):
            raise requests.ConnectionError('refused')

        monkeypatch.setattr('app.services.registry_service.requests.post', fail)

        response = client.post('/api/lookup', json={'registration': 'AB12CDE'})

        assert response.status_code == 502


class TestSystemEndpoints:
    """Test health and streaming endpoints"""

    def test_health(self, client):
        response = client.get('/api/health')

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'healthy'
        assert data['scanner']['engine'] == 'grid'
        assert data['registry'] == 'not_configured'

    def test_health_degraded_without_models(self):
        scanner = PlateScanner(use_gpu=False, text_engine=FakeTextEngine(None))
        client = create_app('testing', scanner=scanner).test_client()

        response = client.get('/api/health')

        assert response.status_code == 503
        assert response.get_json()['status'] == 'degraded'
        scanner.close()

    def test_snapshot_without_camera(self, client):
        response = client.get('/stream/snapshot')

        assert response.status_code == 503

    def test_unknown_route(self, client):
        response = client.get('/api/nope')

        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'NOT_FOUND'

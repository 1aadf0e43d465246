"""Services package."""

from .camera_service import CameraService, CameraStream
from .registry_service import RegistryError, VehicleRegistryClient

__all__ = ['CameraService', 'CameraStream', 'RegistryError', 'VehicleRegistryClient']

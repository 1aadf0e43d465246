"""
Vehicle Registry Service

Thin client for a DVLA Vehicle Enquiry Service compatible lookup API.
The response is passed through untouched.
"""

import logging
from typing import Dict, Optional, Tuple

import requests

from platescan.plate_text import normalize_plate

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Lookup could not be performed."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class VehicleRegistryClient:
    """Looks up vehicle records by registration number."""

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        timeout: float = 10.0
    ):
        self.base_url = base_url.rstrip('/') if base_url else None
        self.api_key = api_key
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def lookup(self, registration: str) -> Tuple[Dict, int]:
        """
        Fetch the vehicle record for a registration.

        Args:
            registration: Plate in any format; it is normalized first.

        Returns:
            Tuple of (response body, upstream HTTP status).

        Raises:
            RegistryError: Empty registration (400), missing configuration
                (501) or unreachable registry (502).
        """
        normalized = normalize_plate(registration)
        if not normalized:
            raise RegistryError('Registration is required.', 400)

        if not self.is_configured:
            raise RegistryError('Vehicle registry is not configured.', 501)

        try:
            response = requests.post(
                f"{self.base_url}/vehicles",
                json={'registrationNumber': normalized},
                headers={'x-api-key': self.api_key},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Vehicle registry request failed: {e}")
            raise RegistryError('Unable to reach vehicle registry.', 502) from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        logger.info(f"Registry lookup for {normalized}: HTTP {response.status_code}")
        return payload, response.status_code

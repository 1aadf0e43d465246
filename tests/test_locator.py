"""
Tests for the edge-based plate locator
"""

import numpy as np

from platescan.locator import locate_plate_region
from platescan.types import RasterImage


def white_with_block(width, height, x, y, w, h):
    bgr = np.full((height, width, 3), 255, dtype=np.uint8)
    bgr[y:y + h, x:x + w] = 0
    return RasterImage.from_bgr(bgr)


class TestLocatePlateRegion:
    """Test plate-shaped region search"""

    def test_finds_plate_shaped_block(self):
        image = white_with_block(640, 360, 200, 150, 200, 50)

        region = locate_plate_region(image)

        assert region is not None
        x, y, w, h = region
        assert x <= 200 and y <= 150
        assert x + w >= 400 and y + h >= 200
        assert w < 300 and h < 100

    def test_downscaled_search_maps_back(self):
        """Regions found on the reduced frame are returned in full resolution"""
        image = white_with_block(1280, 720, 400, 300, 400, 100)

        x, y, w, h = locate_plate_region(image, max_width=640)

        assert x <= 402 and y <= 302
        assert x + w >= 798 and y + h >= 398
        assert x + w <= 1280 and y + h <= 720

    def test_blank_image(self):
        image = white_with_block(640, 360, 0, 0, 0, 0)

        assert locate_plate_region(image) is None

    def test_square_rejected(self):
        image = white_with_block(640, 360, 200, 100, 120, 120)

        assert locate_plate_region(image) is None

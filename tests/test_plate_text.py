"""
Tests for plate text extraction and normalization
"""

import pytest

from platescan.plate_text import extract_plate, is_uk_plate, normalize_plate


class TestExtractPlate:
    """Test recovery of a registration from OCR text"""

    @pytest.mark.parametrize('raw,expected', [
        ('LM22 XPT', 'LM22XPT'),
        ('L M 2 2 X P T', 'LM22XPT'),
        ('lm22-xpt', 'LM22XPT'),
        ('GB | LM22 XPT', 'LM22XPT'),
        ('??##??', ''),
        ('', ''),
        ('AB', ''),
    ])
    def test_extraction(self, raw, expected):
        assert extract_plate(raw) == expected

    def test_uk_pattern_preferred_over_loose(self):
        """The UK pattern is searched before any alphanumeric run"""
        assert extract_plate('123 AB12CDE') == 'AB12CDE'

    def test_loose_match(self):
        """Non-UK plates fall back to the first 5-8 character run"""
        assert extract_plate('K 123 ABC') == 'K123ABC'

    def test_loose_match_truncates_long_run(self):
        assert extract_plate('ABCDEFGHIJ') == 'ABCDEFGH'

    def test_result_is_canonical(self):
        for raw in ('LM22 XPT', 'x9 87 y', 'w0w-0w0w'):
            plate = extract_plate(raw)
            assert plate == normalize_plate(plate)


class TestNormalizePlate:
    """Test canonicalization of manual entry"""

    @pytest.mark.parametrize('value,expected', [
        ('lm22 xpt', 'LM22XPT'),
        (' LM22-XPT ', 'LM22XPT'),
        ('', ''),
        (None, ''),
        ('é!', ''),
    ])
    def test_normalization(self, value, expected):
        assert normalize_plate(value) == expected

    def test_idempotent(self):
        once = normalize_plate('ab 12 c.d.e')
        assert normalize_plate(once) == once


class TestIsUkPlate:

    def test_current_format(self):
        assert is_uk_plate('lm22 xpt')

    def test_other_formats(self):
        assert not is_uk_plate('K123ABC')
        assert not is_uk_plate('')

"""
Plate Text Normalization

Recovers a registration from noisy OCR text and canonicalizes
manually entered plates.
"""

import re

# Current UK format: two letters, two digits, three letters (e.g. LM22XPT)
UK_PLATE = re.compile(r'[A-Z]{2}\d{2}[A-Z]{3}')
LOOSE_PLATE = re.compile(r'[A-Z0-9]{5,8}')

_NON_PLATE_CHARS = re.compile(r'[^A-Z0-9]')


def normalize_plate(value: str) -> str:
    """
    Canonicalize a plate for lookup, comparison or display.

    Uppercases and strips everything that is not A-Z or 0-9. Never rejects
    input: ``"lm22 xpt"`` becomes ``"LM22XPT"``.
    """
    if not value:
        return ""
    return _NON_PLATE_CHARS.sub('', value.upper())


def extract_plate(raw_text: str) -> str:
    """
    Pull the most plate-like substring out of raw OCR text.

    Tried in order, first hit wins:
    1. UK pattern on the text with separators removed
    2. Any 5-8 character alphanumeric run on that text
    3. UK pattern on a whitespace-separated token
    4. 5-8 character alphanumeric token

    Returns:
        The plate, or an empty string when nothing plate-shaped is found.
    """
    if not raw_text:
        return ""

    cleaned = _NON_PLATE_CHARS.sub(' ', raw_text.upper())
    condensed = re.sub(r'\s+', '', cleaned)

    strict = UK_PLATE.search(condensed)
    if strict:
        return strict.group(0)

    loose = LOOSE_PLATE.search(condensed)
    if loose:
        return loose.group(0)

    tokens = cleaned.split()
    for token in tokens:
        if UK_PLATE.fullmatch(token):
            return token
    for token in tokens:
        if LOOSE_PLATE.fullmatch(token):
            return token

    return ""


def is_uk_plate(value: str) -> bool:
    """Check whether a plate matches the current UK format."""
    return UK_PLATE.fullmatch(normalize_plate(value)) is not None

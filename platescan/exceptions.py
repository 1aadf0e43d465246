"""
Scan Errors

Exception hierarchy raised by the plate recognition pipeline. Each error
carries a stable ``code`` used by the HTTP layer in its JSON error body.
"""


class PlateScanError(Exception):
    """Base class for all pipeline errors."""

    code = 'SCAN_ERROR'
    recoverable = True

    def __init__(self, message: str = None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__


class CameraUnavailable(PlateScanError):
    """Camera is not available."""

    code = 'CAMERA_UNAVAILABLE'
    recoverable = False


class TensorPrepFailure(PlateScanError):
    """Image could not be prepared for inference."""

    code = 'TENSOR_PREP_FAILURE'


class NoDetectionFound(PlateScanError):
    """No plate detected. Try again with a clearer shot."""

    code = 'NO_DETECTION'


class ScanTimeout(PlateScanError):
    """Plate scan timed out."""

    code = 'SCAN_TIMEOUT'


class ScanBusy(PlateScanError):
    """A plate scan is already in progress."""

    code = 'SCAN_BUSY'


class DecodeShapeMismatch(PlateScanError):
    """Model output does not match its declared shape."""

    code = 'DECODE_SHAPE_MISMATCH'


class ModelUnavailable(PlateScanError):
    """Model file could not be loaded."""

    code = 'MODEL_UNAVAILABLE'
    recoverable = False

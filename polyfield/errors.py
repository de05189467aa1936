# errors.py
# Exception types raised by the engine


class PolyFieldError(Exception):
    """Base class for all engine errors."""


class DeviceConnectionError(PolyFieldError, ConnectionError):
    """Opening a serial port or dialing a network device failed."""


class SlotNotFoundError(PolyFieldError, LookupError):
    """Operation on a slot that is unknown, unconnected or never calibrated."""


class NotConnectedError(DeviceConnectionError, SlotNotFoundError):
    def __init__(self, slot):
        super().__init__(f"{slot} not connected")
        self.slot = slot


class DeviceIOError(PolyFieldError, IOError):
    """Write/read failure or read timeout on a live channel."""


class ResponseParseError(PolyFieldError, ValueError):
    """
    Malformed instrument response.
    `token` is the offending field, `field_count` is set when too few fields arrived.
    """

    def __init__(self, message, token=None, field_count=None):
        super().__init__(message)
        self.token = token
        self.field_count = field_count


class InconsistentReadingError(PolyFieldError):
    def __init__(self, first_mm, second_mm):
        super().__init__(
            f"readings inconsistent. R1(SD): {first_mm:.0f}mm, R2(SD): {second_mm:.0f}mm"
        )
        self.first_mm = first_mm
        self.second_mm = second_mm


class CalibrationPreconditionError(PolyFieldError):
    """Edge or throw attempted before the calibration allows it."""


class NoWindDataError(PolyFieldError):
    """No wind samples in the averaging window."""

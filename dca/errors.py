"""
Error taxonomy for the DCA transcoder.

Only EndOfStream is an expected condition: it terminates read loops.
Everything else is a fault that callers report.
"""

from typing import Optional


class DcaError(Exception):
    """Base class for all DCA errors."""


class ValidationError(DcaError, ValueError):
    """Encode options are out of range. Never reaches the encoder process."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class FormatError(DcaError):
    """Stream is not valid DCA (or not a valid container)."""


class NotDcaError(FormatError):
    """DCA magic header not found, either not dca or raw dca frames."""


class MetadataParseError(FormatError):
    """Format version digit or JSON metadata could not be parsed."""


class OggFormatError(FormatError):
    """Malformed or truncated Ogg page."""


class ShortReadError(DcaError):
    """Fewer bytes were available than the declared length."""

    def __init__(self, expected: int, got: int) -> None:
        super().__init__(f"short read: expected {expected} bytes, got {got}")
        self.expected = expected
        self.got = got


class ProcessError(DcaError):
    """Encoder process could not be launched or its pipes set up."""


class ProbeError(DcaError):
    """Prober invocation or prober output parsing failed."""


class EndOfStream(DcaError, EOFError):
    """No more frames. Raised by every read after exhaustion."""


class SinkTimeoutError(DcaError):
    """Sink did not accept a frame within the hand-off timeout."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        if timeout is None:
            super().__init__("sink unavailable")
        else:
            super().__init__(f"sink unavailable (no hand-off within {timeout:.3f}s)")
        self.timeout = timeout


class NotRunningError(DcaError):
    """Stop requested but no encoder process is active."""

    def __init__(self, message: str = "Not running") -> None:
        super().__init__(message)

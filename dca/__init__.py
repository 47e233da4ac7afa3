"""
DCA: Opus frame streams for voice transports.

Transcodes arbitrary audio through ffmpeg into a length-prefixed Opus
frame stream and forwards frames to a real-time sink.
"""

# Current version of the DCA format
FORMAT_VERSION = 1

# Current version of this library (written to the metadata prologue)
LIBRARY_VERSION = "0.0.4"

REPOSITORY_URL = "https://github.com/jonas747/dca"

from dca.errors import (  # noqa: E402
    DcaError,
    EndOfStream,
    FormatError,
    MetadataParseError,
    NotDcaError,
    NotRunningError,
    OggFormatError,
    ProbeError,
    ProcessError,
    ShortReadError,
    SinkTimeoutError,
    ValidationError,
)
from dca.audio.wire import Decoder, decode_frame, decode_prologue, encode_frame, encode_prologue  # noqa: E402
from dca.audio.metadata import Metadata  # noqa: E402
from dca.config import DcaConfig  # noqa: E402
from dca.encoder.options import STD_ENCODE_OPTIONS, AudioApplication, EncodeOptions  # noqa: E402
from dca.encoder.stats import EncodeStats  # noqa: E402
from dca.encoder.encode_session import EncodeSession, SessionState, encode_file, encode_mem  # noqa: E402
from dca.sources.base import OpusReader  # noqa: E402
from dca.stream.sink import FrameSink, QueueSink  # noqa: E402
from dca.stream.streaming_session import StreamingSession  # noqa: E402

__all__ = [
    "FORMAT_VERSION",
    "LIBRARY_VERSION",
    "REPOSITORY_URL",
    "AudioApplication",
    "DcaConfig",
    "DcaError",
    "Decoder",
    "EncodeOptions",
    "EncodeSession",
    "EncodeStats",
    "EndOfStream",
    "FormatError",
    "FrameSink",
    "Metadata",
    "MetadataParseError",
    "NotDcaError",
    "NotRunningError",
    "OggFormatError",
    "OpusReader",
    "ProbeError",
    "ProcessError",
    "QueueSink",
    "STD_ENCODE_OPTIONS",
    "SessionState",
    "ShortReadError",
    "SinkTimeoutError",
    "StreamingSession",
    "ValidationError",
    "decode_frame",
    "decode_prologue",
    "encode_file",
    "encode_frame",
    "encode_mem",
    "encode_prologue",
]

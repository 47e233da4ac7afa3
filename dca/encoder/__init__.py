"""
DCA encoder subsystem.

This package provides the encoding components for DCA:
- EncodeSession: Drives one ffmpeg transcode and queues DCA frames
- EncodeOptions: Validated encode settings
- EncodeStats: ffmpeg progress snapshots
"""

from dca.encoder.encode_session import EncodeSession, SessionState, encode_file, encode_mem
from dca.encoder.options import STD_ENCODE_OPTIONS, AudioApplication, EncodeOptions
from dca.encoder.stats import EncodeStats

__all__ = [
    "AudioApplication",
    "EncodeOptions",
    "EncodeSession",
    "EncodeStats",
    "STD_ENCODE_OPTIONS",
    "SessionState",
    "encode_file",
    "encode_mem",
]

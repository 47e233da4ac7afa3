"""
DCA audio formats: wire framing, metadata documents, Ogg pages and the frame queue.
"""

from dca.audio.frame_queue import FrameQueue
from dca.audio.metadata import Metadata
from dca.audio.ogg import OggPage, OggPageReader
from dca.audio.wire import Decoder, decode_frame, decode_prologue, encode_frame, encode_prologue

__all__ = [
    "Decoder",
    "FrameQueue",
    "Metadata",
    "OggPage",
    "OggPageReader",
    "decode_frame",
    "decode_prologue",
    "encode_frame",
    "encode_prologue",
]

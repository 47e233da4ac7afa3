"""
DCA streaming delivery.
"""

from dca.stream.sink import FrameSink, QueueSink
from dca.stream.streaming_session import StreamingSession

__all__ = [
    "FrameSink",
    "QueueSink",
    "StreamingSession",
]

"""
Base OpusReader interface for DCA.

Anything that can hand out Opus frames one at a time implements this:
encode sessions and DCA stream decoders alike.
"""

from abc import ABC, abstractmethod
from typing import Iterator

from dca.errors import EndOfStream


class OpusReader(ABC):
    """
    Base class for Opus frame sources.

    Frames are raw Opus packets (no length prefix), returned in
    production order.
    """

    @abstractmethod
    def opus_frame(self) -> bytes:
        """
        Return the next Opus frame.

        Raises:
            EndOfStream: When the source is exhausted
        """
        pass

    @abstractmethod
    def frame_duration(self) -> float:
        """
        Playback duration of one frame, in seconds.
        """
        pass

    def opus_frames(self) -> Iterator[bytes]:
        """
        Yield Opus frames until the source is exhausted.
        """
        while True:
            try:
                yield self.opus_frame()
            except EndOfStream:
                return

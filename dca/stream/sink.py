"""
Frame sinks.

A sink is where the streaming session hands frames to the voice
transport. Hand-off is bounded: a sink that cannot take a frame in time
raises SinkTimeoutError instead of dropping it.
"""

from __future__ import annotations

import queue
from abc import ABC, abstractmethod
from typing import Optional

from dca.errors import SinkTimeoutError


class FrameSink(ABC):
    """
    Abstract base class for all frame sinks.

    All sinks must implement send(); close() is optional.
    """

    @abstractmethod
    def send(self, frame: bytes, timeout: float) -> None:
        """
        Hand one Opus frame to the transport.

        Args:
            frame: Bare Opus packet
            timeout: Seconds to wait for the transport to accept it

        Raises:
            SinkTimeoutError: If the frame was not accepted in time
        """
        ...

    def close(self) -> None:
        """
        Release transport resources.
        """
        pass


class QueueSink(FrameSink):
    """
    Sink backed by a bounded queue, the shape of a voice connection's
    outgoing opus channel. The transport side calls receive().
    """

    def __init__(self, capacity: int = 1) -> None:
        if capacity <= 0:
            raise ValueError(f"QueueSink capacity must be > 0, got {capacity}")
        self._queue: "queue.Queue[bytes]" = queue.Queue(maxsize=capacity)

    def send(self, frame: bytes, timeout: float) -> None:
        try:
            self._queue.put(frame, timeout=timeout)
        except queue.Full:
            raise SinkTimeoutError(timeout)

    def receive(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """Take the next frame, or None if none arrives within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def qsize(self) -> int:
        return self._queue.qsize()

"""
Bounded, closable frame queue.

This module provides FrameQueue, the single hand-off point between the
encode session's producer thread and any number of frame readers.
Unlike a ring buffer it never drops: a full queue blocks the producer,
an empty open queue blocks readers. Closing the queue is the end of
stream signal for everyone, present and future.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Optional


@dataclass
class FrameQueueStats:
    """
    Statistics for FrameQueue.

    Attributes:
        capacity: Maximum number of frames the queue can hold
        count: Current number of queued frames
        total_pushed: Frames accepted since creation
        closed: Whether close() has been called
    """
    capacity: int
    count: int
    total_pushed: int
    closed: bool


class FrameQueue:
    """
    Thread-safe blocking FIFO of complete frames.

    put() blocks while the queue is full; get() blocks while it is empty
    and still open. After close(), get() keeps returning queued frames and
    then None forever.
    """

    def __init__(self, capacity: int) -> None:
        """
        Args:
            capacity: Maximum number of frames (must be > 0)

        Raises:
            ValueError: If capacity <= 0
        """
        if capacity <= 0:
            raise ValueError(f"FrameQueue capacity must be > 0, got {capacity}")

        self._capacity = capacity
        self._buffer: deque[bytes] = deque()
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._not_full = threading.Condition(self._lock)
        self._closed = False
        self._total_pushed = 0

    def put(self, frame: bytes, timeout: Optional[float] = None) -> bool:
        """
        Append a frame, waiting for space if the queue is full.

        Args:
            frame: Complete frame bytes
            timeout: Seconds to wait for space. None waits indefinitely.

        Returns:
            True if queued, False if the queue was closed or the wait timed out
        """
        with self._lock:
            end = None if timeout is None else time.monotonic() + timeout
            while len(self._buffer) >= self._capacity and not self._closed:
                if end is None:
                    self._not_full.wait()
                else:
                    remaining = end - time.monotonic()
                    if remaining <= 0:
                        return False
                    self._not_full.wait(timeout=remaining)

            if self._closed:
                return False

            self._buffer.append(frame)
            self._total_pushed += 1
            self._not_empty.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """
        Remove and return the oldest frame.

        Args:
            timeout: Seconds to wait for a frame. None waits indefinitely.

        Returns:
            Frame bytes, or None once the queue is closed and drained (or the wait timed out)
        """
        with self._lock:
            end = None if timeout is None else time.monotonic() + timeout
            while not self._buffer:
                if self._closed:
                    return None
                if end is None:
                    self._not_empty.wait()
                else:
                    remaining = end - time.monotonic()
                    if remaining <= 0:
                        return None
                    self._not_empty.wait(timeout=remaining)

            frame = self._buffer.popleft()
            self._not_full.notify()
            return frame

    def close(self) -> None:
        """
        Mark end of stream. Wakes every waiting producer and reader.

        Safe to call multiple times.
        """
        with self._lock:
            self._closed = True
            self._not_empty.notify_all()
            self._not_full.notify_all()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def capacity(self) -> int:
        return self._capacity

    def stats(self) -> FrameQueueStats:
        with self._lock:
            return FrameQueueStats(
                capacity=self._capacity,
                count=len(self._buffer),
                total_pushed=self._total_pushed,
                closed=self._closed,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

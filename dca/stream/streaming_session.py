"""
Streaming session.

This module provides StreamingSession, which pulls Opus frames from any
OpusReader (an encode session or a DCA decoder) and hands them to a
FrameSink, with cooperative pause/resume and a bounded hand-off so a
stalled transport can never wedge the pipeline.

Threads per forwarding run:
- forwarder (DcaStreamingSession): read frames, time each hand-off
- writer (DcaSinkWriter): call sink.send() for one frame at a time

The forwarder owns the hand-off deadline. A sink that ignores its
timeout only strands the writer; the forwarder still fails the stream
with SinkTimeoutError.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Optional, Tuple

from dca.config import DcaConfig
from dca.errors import EndOfStream, SinkTimeoutError
from dca.sources.base import OpusReader
from dca.stream.sink import FrameSink

logger = logging.getLogger(__name__)


class _Delivery:
    """One frame on its way to the sink."""

    __slots__ = ("frame", "done", "error")

    def __init__(self, frame: bytes) -> None:
        self.frame = frame
        self.done = threading.Event()
        self.error: Optional[BaseException] = None


class StreamingSession:
    """
    Forwards frames from source to sink on a background thread.

    Starts on construction. Pausing makes the forwarding thread exit at
    its next frame boundary; resuming starts a new one that carries on
    from the same frame counter. Finishing (end of stream or a delivery
    error) truncates the source if it supports it, so no encoder process
    is left behind.
    """

    def __init__(
        self,
        source: OpusReader,
        sink: FrameSink,
        *,
        on_done: Optional[Callable[[Optional[BaseException]], None]] = None,
        sink_timeout: Optional[float] = None,
        realtime: bool = False,
        truncate_source: bool = True,
        config: Optional[DcaConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Args:
            source: Where frames come from
            sink: Where frames go
            on_done: Called once when finished, with None for a clean end of stream
            sink_timeout: Seconds a hand-off may take (default: config.sink_timeout_sec)
            realtime: Space hand-offs one frame duration apart
            truncate_source: Call source.truncate() when finished, if it has one
            config: Used for the default sink timeout (default: DcaConfig.load_config())
            logger: Logger for this session (default: module logger)
        """
        if sink_timeout is None:
            if config is None:
                config = DcaConfig.load_config()
            sink_timeout = config.sink_timeout_sec
        if sink_timeout <= 0:
            raise ValueError(f"sink_timeout must be > 0, got {sink_timeout}")

        self._source = source
        self._sink = sink
        self._on_done = on_done
        self._sink_timeout = sink_timeout
        self._realtime = realtime
        self._truncate_source = truncate_source
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._paused = False
        self._running = False
        self._finished = False
        self._err: Optional[BaseException] = None
        self._frames_sent = 0
        self._done_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._writer_thread: Optional[threading.Thread] = None

        with self._lock:
            self._spawn_locked()

    def _spawn_locked(self) -> None:
        # Caller holds self._lock
        if self._running:
            raise RuntimeError("Stream is already running!")
        self._running = True

        # Capacity 1: the forwarder waits for each delivery before queueing the next
        handoff: "queue.Queue[Optional[_Delivery]]" = queue.Queue(maxsize=1)
        self._writer_thread = threading.Thread(
            target=self._write_sink,
            args=(handoff,),
            daemon=True,
            name="DcaSinkWriter",
        )
        self._thread = threading.Thread(
            target=self._stream,
            args=(handoff,),
            daemon=True,
            name="DcaStreamingSession",
        )
        self._writer_thread.start()
        self._thread.start()

    def _write_sink(self, handoff: "queue.Queue[Optional[_Delivery]]") -> None:
        while True:
            delivery = handoff.get()
            if delivery is None:
                return
            try:
                self._sink.send(delivery.frame, self._sink_timeout)
            except Exception as e:
                delivery.error = e
            finally:
                delivery.done.set()

    @staticmethod
    def _stop_writer(handoff: "queue.Queue[Optional[_Delivery]]") -> None:
        # A delivery the writer never picked up is dropped; only this thread puts
        try:
            handoff.get_nowait()
        except queue.Empty:
            pass
        handoff.put_nowait(None)

    def _stream(self, handoff: "queue.Queue[Optional[_Delivery]]") -> None:
        try:
            self._forward(handoff)
        finally:
            self._stop_writer(handoff)

    def _forward(self, handoff: "queue.Queue[Optional[_Delivery]]") -> None:
        try:
            frame_duration = self._source.frame_duration()
        except Exception as e:
            self._finish(e)
            return
        next_tick = time.monotonic()

        while True:
            with self._lock:
                paused = self._paused
                if paused:
                    self._running = False
                    frames_sent = self._frames_sent
            if paused:
                self._logger.debug(f"Stream paused after {frames_sent} frames")
                return

            try:
                self._read_next(handoff)
            except Exception as e:
                self._finish(e)
                return

            if self._realtime:
                next_tick += frame_duration
                sleep_time = next_tick - time.monotonic()
                if sleep_time > 0:
                    time.sleep(sleep_time)
                else:
                    # Resync if behind schedule instead of accumulating delay
                    next_tick = time.monotonic()

    def _read_next(self, handoff: "queue.Queue[Optional[_Delivery]]") -> None:
        """
        Raises:
            EndOfStream: Source exhausted
            SinkTimeoutError: Sink did not take the frame within sink_timeout
        """
        frame = self._source.opus_frame()

        deadline = time.monotonic() + self._sink_timeout
        delivery = _Delivery(frame)
        try:
            handoff.put(delivery, timeout=self._sink_timeout)
        except queue.Full:
            raise SinkTimeoutError(self._sink_timeout)
        if not delivery.done.wait(timeout=max(0.0, deadline - time.monotonic())):
            raise SinkTimeoutError(self._sink_timeout)
        if delivery.error is not None:
            raise delivery.error

        with self._lock:
            self._frames_sent += 1

    def _finish(self, err: BaseException) -> None:
        clean = isinstance(err, EndOfStream)
        with self._lock:
            self._finished = True
            self._running = False
            self._err = None if clean else err
            frames_sent = self._frames_sent

        if clean:
            self._logger.info(f"Stream finished after {frames_sent} frames")
        else:
            self._logger.error(f"Stream stopped after {frames_sent} frames: {err}")

        if self._truncate_source:
            truncate = getattr(self._source, "truncate", None)
            if callable(truncate):
                truncate()

        # wait() returns only after the callback has run
        try:
            if self._on_done is not None:
                self._on_done(None if clean else err)
        finally:
            self._done_event.set()

    def set_paused(self, paused: bool) -> None:
        """Pause or resume forwarding. Repeating the current state is a no-op."""
        with self._lock:
            if self._finished:
                return

            # Already running
            if not paused and self._running:
                # Was set to stop after the current frame, undo that
                self._paused = False
                return

            # Already stopped
            if paused and not self._running:
                self._paused = True
                return

            # Time to start it up again
            if not paused and not self._running and self._paused:
                self._paused = False
                self._spawn_locked()
                return

            self._paused = paused

    def set_running(self, running: bool) -> None:
        self.set_paused(not running)

    def paused(self) -> bool:
        with self._lock:
            return self._paused

    def playback_position(self) -> float:
        """Seconds of audio handed to the sink so far."""
        with self._lock:
            frames_sent = self._frames_sent
        return frames_sent * self._source.frame_duration()

    def frames_sent(self) -> int:
        with self._lock:
            return self._frames_sent

    def finished(self) -> Tuple[bool, Optional[BaseException]]:
        """Whether the stream is over, and the error that ended it (None for end of stream)."""
        with self._lock:
            return self._finished, self._err

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until finished. Returns False if timeout expired first."""
        return self._done_event.wait(timeout=timeout)

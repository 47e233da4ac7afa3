"""
Encode session.

This module provides EncodeSession, which drives one ffmpeg process
from start to exhaustion: it turns ffmpeg's Ogg Opus output into DCA
wire frames, buffers them in a bounded FrameQueue, tracks progress stats
and guarantees the process never outlives the session.

Threads per session:
- producer (DcaEncodeSession): probe, launch, read stdout pages, close the queue
- stderr drain (DcaStderrDrain): parse -stats progress lines
- stdin copy (DcaStdinCopy): pipe sources only, feeds the input stream to ffmpeg

Nothing blocks while holding the session lock. Stopping kills the process;
the producer sees stdout EOF and closes the queue, which is the only end
of stream signal readers ever get.
"""

from __future__ import annotations

import enum
import logging
import re
import signal
import subprocess
import threading
import time
from typing import BinaryIO, Iterator, List, Optional

from dca.audio.frame_queue import FrameQueue
from dca.audio.metadata import Metadata, OpusMetadata, OriginMetadata, SongMetadata
from dca.audio.ogg import MAX_SEGMENT_SIZE, OggPageReader
from dca.audio.wire import decode_frame, decode_prologue, encode_frame, encode_prologue
from dca.config import DcaConfig
from dca.encoder.options import STD_ENCODE_OPTIONS, AudioApplication, EncodeOptions
from dca.encoder.probe import extract_cover, probe_file
from dca.encoder.stats import EncodeStats, is_progress_line, parse_progress_line
from dca.errors import EndOfStream, NotRunningError, OggFormatError, ProbeError, ProcessError
from dca.sources.base import OpusReader

logger = logging.getLogger(__name__)


PIPE_INPUT = "pipe:0"
PIPE_ORIGIN_ENCODING = "pcm16/s16le"

STDIN_CHUNK_SIZE = 8192
STDERR_CHUNK_SIZE = 4096
THREAD_JOIN_TIMEOUT_SEC = 1.0
REAP_TIMEOUT_SEC = 5.0

_LINE_SPLIT_RE = re.compile(rb"[\r\n]")


class SessionState(enum.Enum):
    """Encode session lifecycle."""
    NOT_STARTED = 1
    RUNNING = 2
    STOPPED = 3  # ffmpeg was killed
    EXHAUSTED = 4  # output ended on its own


def build_ffmpeg_cmd(options: EncodeOptions, input_path: str = PIPE_INPUT, ffmpeg_bin: str = "ffmpeg") -> List[str]:
    """
    Build the ffmpeg command line for an encode.

    Output is Ogg Opus on stdout; -stats puts progress lines on stderr.
    """
    return [
        ffmpeg_bin,
        "-hide_banner",
        "-stats",
        "-i", input_path,
        "-map", "0:a",
        "-af", f"volume={options.volume / 256:.6g}",
        "-acodec", "libopus",
        "-f", "ogg",
        "-vbr", "on" if options.vbr else "off",
        "-compression_level", str(options.compression_level),
        "-ar", str(options.frame_rate),
        "-ac", str(options.channels),
        "-b:a", str(options.bitrate * 1000),
        "-application", AudioApplication(options.application).value,
        "-frame_duration", str(options.frame_duration),
        "-packet_loss", str(options.packet_loss),
        "pipe:1",
    ]


def _write_all(stream: BinaryIO, data: bytes) -> None:
    # Unbuffered pipes may accept only part of a write
    view = memoryview(data)
    while view:
        written = stream.write(view)
        if written is None:
            written = 0
        view = view[written:]


class EncodeSession(OpusReader):
    """
    One ffmpeg transcode, from source to exhausted (or stopped) frame queue.

    Starts on construction. File sources are probed on the producer thread
    first; the session counts as running from ffmpeg launch. Read with
    read_frame() (wire frames, prologue first unless raw_output), read()
    (the wire stream as bytes) or opus_frame() (bare Opus packets).

    A reader that gives up before end of stream must call truncate(),
    otherwise ffmpeg keeps running and the producer stays blocked on the
    full queue.
    """

    def __init__(
        self,
        options: Optional[EncodeOptions] = None,
        *,
        file_path: Optional[str] = None,
        pipe_reader: Optional[BinaryIO] = None,
        config: Optional[DcaConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Validate options and start encoding.

        Args:
            options: Encode options (default: STD_ENCODE_OPTIONS)
            file_path: Path or URL for ffmpeg to read
            pipe_reader: Binary stream copied into ffmpeg's stdin
            config: Tool locations and timeouts (default: DcaConfig.load_config())
            logger: Logger for this session (default: module logger)

        Raises:
            ValueError: Unless exactly one of file_path and pipe_reader is given
            ValidationError: If options are out of range
        """
        if (file_path is None) == (pipe_reader is None):
            raise ValueError("Exactly one of file_path and pipe_reader must be given")

        if options is None:
            options = STD_ENCODE_OPTIONS
        options.validate()

        self._options = options
        self._config = config if config is not None else DcaConfig.load_config()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._file_path = file_path
        self._pipe_reader = pipe_reader

        # Guards state, process handle, stats and counters
        self._lock = threading.Lock()
        self._state = SessionState.NOT_STARTED
        self._process: Optional[subprocess.Popen] = None
        self._killed = False
        self._truncated = False
        self._last_stats: Optional[EncodeStats] = None
        self._frames_produced = 0
        self._started_at: Optional[float] = None

        self._frames = FrameQueue(options.buffered_frames)

        # Byte-stream side (read() / opus_frame())
        self._read_lock = threading.RLock()
        self._read_buf = bytearray()
        self._prologue_pending = not options.raw_output
        self.metadata: Optional[Metadata] = None

        self._stderr_thread: Optional[threading.Thread] = None
        self._stdin_thread: Optional[threading.Thread] = None
        self._run_thread = threading.Thread(target=self._run, daemon=True, name="DcaEncodeSession")

        self._run_thread.start()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def _run(self) -> None:
        try:
            self._produce()
        except Exception as e:
            self._logger.error(f"Encode session failed: {e}", exc_info=True)
        finally:
            self._frames.close()
            with self._lock:
                if self._state in (SessionState.NOT_STARTED, SessionState.RUNNING):
                    self._state = SessionState.EXHAUSTED
                state = self._state
                produced = self._frames_produced
            self._logger.debug(f"Encode session finished: state={state.name} frames={produced}")

    def _produce(self) -> None:
        if not self._options.raw_output:
            try:
                metadata = self._build_metadata()
            except ProbeError as e:
                self._logger.error(f"Probe failed for {self._file_path}: {e}")
                return
            # Always frame zero: queued before ffmpeg exists
            self._frames.put(encode_prologue(metadata))

        input_path = self._file_path if self._file_path is not None else PIPE_INPUT
        cmd = build_ffmpeg_cmd(self._options, input_path, self._config.ffmpeg_bin)

        with self._lock:
            if self._truncated:
                self._logger.debug("Session truncated before launch, ffmpeg not started")
                return
            try:
                process = self._launch(cmd)
            except ProcessError as e:
                self._logger.error(str(e))
                return
            self._process = process
            self._started_at = time.monotonic()
            self._state = SessionState.RUNNING

        self._logger.info(f"Started ffmpeg PID={process.pid} input={input_path}")

        self._stderr_thread = threading.Thread(
            target=self._read_stderr,
            args=(process.stderr,),
            daemon=True,
            name="DcaStderrDrain",
        )
        self._stderr_thread.start()

        if self._pipe_reader is not None:
            self._stdin_thread = threading.Thread(
                target=self._copy_stdin,
                args=(process.stdin,),
                daemon=True,
                name="DcaStdinCopy",
            )
            self._stdin_thread.start()

        try:
            self._read_stdout(process.stdout)
        finally:
            self._reap(process)

    def _launch(self, cmd: List[str]) -> subprocess.Popen:
        """
        Raises:
            ProcessError: If ffmpeg cannot be started or a pipe is missing
        """
        self._logger.debug(f"Launching: {' '.join(cmd)}")
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE if self._pipe_reader is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
            )
        except (OSError, ValueError) as e:
            raise ProcessError(f"RunStart Error: {e}") from e

        missing = [name for name in ("stdout", "stderr") if getattr(process, name) is None]
        if self._pipe_reader is not None and process.stdin is None:
            missing.append("stdin")
        if missing:
            process.kill()
            process.wait()
            raise ProcessError(f"Pipe setup failed: no {', '.join(missing)}")
        return process

    def _reap(self, process: subprocess.Popen) -> None:
        # Closing our read end makes a still-writing ffmpeg fail with EPIPE
        if process.stdout is not None:
            try:
                process.stdout.close()
            except OSError:
                pass
        try:
            returncode = process.wait(timeout=REAP_TIMEOUT_SEC)
        except subprocess.TimeoutExpired:
            self._logger.warning(f"ffmpeg PID={process.pid} did not exit after end of output, killing")
            process.kill()
            returncode = process.wait()
        with self._lock:
            killed = self._killed

        if killed or returncode == -signal.SIGKILL:
            self._logger.debug(f"ffmpeg PID={process.pid} killed")
        elif returncode != 0:
            self._logger.error(f"Error waiting for ffmpeg: PID={process.pid} exit status {returncode}")
        else:
            self._logger.info(f"ffmpeg PID={process.pid} exited")

        # ffmpeg is gone, so stderr is at EOF once its last progress line is read
        # stdin copy may be parked on a slow input stream; it is a daemon and exits on its own
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=THREAD_JOIN_TIMEOUT_SEC)
            if self._stderr_thread.is_alive():
                self._logger.warning("Stderr drain thread did not terminate within timeout")

        if process.stderr is not None:
            try:
                process.stderr.close()
            except OSError:
                pass

    def _read_stdout(self, stdout: BinaryIO) -> None:
        """
        Walk ffmpeg's Ogg pages and queue one wire frame per Opus packet.

        A segment of MAX_SEGMENT_SIZE continues the packet, anything shorter
        ends it. A partial packet left at end of stream is flushed once.
        """
        reader = OggPageReader(stdout)
        packet = bytearray()

        try:
            for page in reader:
                for segment in page.segments():
                    packet.extend(segment)
                    # Min size of an opus packet is 1 byte
                    if len(segment) < MAX_SEGMENT_SIZE and packet:
                        self._write_opus_frame(bytes(packet))
                        packet.clear()
        except (OggFormatError, OSError, ValueError) as e:
            with self._lock:
                killed = self._killed
            if killed:
                self._logger.debug(f"ffmpeg stdout cut short by kill: {e}")
            else:
                self._logger.error(f"Error reading ffmpeg stdout: {e}")

        if packet:
            self._write_opus_frame(bytes(packet))

    def _write_opus_frame(self, packet: bytes) -> None:
        # OpusHead and OpusTags are framed too: they are the first two frames after the prologue
        try:
            frame = encode_frame(packet)
        except ValueError as e:
            self._logger.warning(f"Error writing opus frame: {e}")
            return

        self._frames.put(frame)
        with self._lock:
            self._frames_produced += 1

    def _read_stderr(self, stderr: BinaryIO) -> None:
        # ffmpeg terminates progress lines with \r, everything else with \n
        pending = b""
        try:
            while True:
                chunk = stderr.read(STDERR_CHUNK_SIZE)
                if not chunk:
                    break
                *lines, pending = _LINE_SPLIT_RE.split(pending + chunk)
                for raw in lines:
                    self._handle_stderr_line(raw.decode("utf-8", errors="replace").strip())
        except (OSError, ValueError) as e:
            self._logger.debug(f"Stderr read error (likely closed): {e}")

        if pending:
            self._handle_stderr_line(pending.decode("utf-8", errors="replace").strip())

    def _handle_stderr_line(self, line: str) -> None:
        if not line:
            return
        if not is_progress_line(line):
            self._logger.debug(f"[FFMPEG] {line}")
            return

        try:
            stats = parse_progress_line(line)
        except ValueError as e:
            self._logger.warning(f"Error parsing ffmpeg stats: {e}")
            return

        with self._lock:
            self._last_stats = stats

    def _copy_stdin(self, stdin: BinaryIO) -> None:
        copied = 0
        try:
            while True:
                chunk = self._pipe_reader.read(STDIN_CHUNK_SIZE)
                if not chunk:
                    break
                _write_all(stdin, chunk)
                copied += len(chunk)
        except BrokenPipeError:
            self._logger.debug(f"ffmpeg stdin closed after {copied} bytes")
        except (OSError, ValueError) as e:
            self._logger.warning(f"Error copying input to ffmpeg: {e}")
        finally:
            try:
                stdin.close()
            except OSError:
                pass

    def _build_metadata(self) -> Metadata:
        """
        Raises:
            ProbeError: If a file source cannot be probed
        """
        opts = self._options
        opus = OpusMetadata(
            bitrate=opts.bitrate * 1000,
            sample_rate=opts.frame_rate,
            application=AudioApplication(opts.application).value,
            frame_size=opts.pcm_frame_len(),
            channels=opts.channels,
            vbr=opts.vbr,
        )

        if self._file_path is None:
            return Metadata(
                opus=opus,
                song_info=SongMetadata(comments=opts.comment or None),
                origin=OriginMetadata(
                    source="pipe",
                    channels=opts.channels,
                    encoding=PIPE_ORIGIN_ENCODING,
                ),
            )

        probe = probe_file(
            self._file_path,
            self._config.ffprobe_bin,
            timeout=self._config.probe_timeout_sec,
            logger=self._logger,
        )
        fmt = probe.format
        try:
            bitrate = int(fmt.bitrate)
        except (TypeError, ValueError):
            raise ProbeError(f"Could not convert bitrate to int: {fmt.bitrate!r}")

        cover = None
        if self._config.extract_cover:
            cover = extract_cover(
                self._file_path,
                self._config.ffmpeg_bin,
                timeout=self._config.probe_timeout_sec,
                logger=self._logger,
            )

        return Metadata(
            opus=opus,
            song_info=SongMetadata(
                title=fmt.tags.title,
                artist=fmt.tags.artist,
                album=fmt.tags.album,
                genre=fmt.tags.genre,
                comments=opts.comment or None,
                cover=cover,
            ),
            origin=OriginMetadata(
                source="file",
                bitrate=bitrate,
                channels=opts.channels,
                encoding=fmt.format_long_name,
                url=self._file_path if "://" in self._file_path else None,
            ),
        )

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def read_frame(self) -> bytes:
        """
        Block until the next wire frame is available.

        If raw_output is not set, the first frame is the metadata prologue.

        Raises:
            EndOfStream: Production is over and the queue is drained
        """
        frame = self._frames.get()
        if frame is None:
            raise EndOfStream()
        return frame

    def read(self, size: int = -1) -> bytes:
        """Read the wire stream as bytes. Returns b"" at end of stream."""
        with self._read_lock:
            while size < 0 or len(self._read_buf) < size:
                frame = self._frames.get()
                if frame is None:
                    break
                self._read_buf.extend(frame)

            if size < 0:
                size = len(self._read_buf)
            data = bytes(self._read_buf[:size])
            del self._read_buf[:size]
            return data

    def opus_frame(self) -> bytes:
        """
        Return the next bare Opus packet.

        The prologue, when present, is consumed on the first call and kept
        in self.metadata.
        """
        with self._read_lock:
            if self._prologue_pending:
                self._prologue_pending = False
                _, self.metadata = decode_prologue(self)
            return decode_frame(self)

    def frame_duration(self) -> float:
        return self._options.frame_duration_sec

    def running(self) -> bool:
        """True from ffmpeg launch until it is stopped or its output ends."""
        with self._lock:
            return self._state == SessionState.RUNNING

    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def stop(self) -> None:
        """
        Kill ffmpeg.

        The process is killed at most once: a second call, or a call after
        ffmpeg exited on its own, raises NotRunningError.

        Raises:
            NotRunningError: No live process to kill
        """
        with self._lock:
            if self._state != SessionState.RUNNING or self._process is None or self._killed:
                raise NotRunningError()
            if self._process.poll() is not None:
                raise NotRunningError("Not running (ffmpeg already exited)")
            try:
                self._process.kill()
            except ProcessLookupError:
                raise NotRunningError("Not running (ffmpeg already exited)")
            self._killed = True
            self._state = SessionState.STOPPED
            pid = self._process.pid
        self._logger.info(f"Killed ffmpeg PID={pid}")

    def truncate(self) -> None:
        """
        Kill ffmpeg and throw away every unread frame until the queue closes.

        Call this whenever you stop reading early; it guarantees no ffmpeg
        process and no blocked producer thread are left behind.
        """
        with self._lock:
            self._truncated = True
        try:
            self.stop()
        except NotRunningError as e:
            self._logger.debug(f"Truncate: {e}")

        discarded = 0
        while self._frames.get() is not None:
            discarded += 1
        with self._read_lock:
            self._read_buf.clear()
        self._logger.debug(f"Truncated session, discarded {discarded} frames")

    def stats(self) -> EncodeStats:
        """Most recent ffmpeg progress (zero-valued until ffmpeg reports)."""
        with self._lock:
            return self._last_stats if self._last_stats is not None else EncodeStats()

    def options(self) -> EncodeOptions:
        return self._options

    def frames_produced(self) -> int:
        with self._lock:
            return self._frames_produced

    def started_at(self) -> Optional[float]:
        """Monotonic time ffmpeg was launched, None before launch."""
        with self._lock:
            return self._started_at

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the producer thread. Returns True if it has finished."""
        self._run_thread.join(timeout=timeout)
        return not self._run_thread.is_alive()

    def __iter__(self) -> Iterator[bytes]:
        while True:
            try:
                yield self.read_frame()
            except EndOfStream:
                return

    def __enter__(self) -> "EncodeSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.truncate()


def encode_file(path: str, options: Optional[EncodeOptions] = None, **kwargs) -> EncodeSession:
    """Encode the file, URL or anything else ffmpeg can open at path."""
    return EncodeSession(options, file_path=path, **kwargs)


def encode_mem(reader: BinaryIO, options: Optional[EncodeOptions] = None, **kwargs) -> EncodeSession:
    """Encode a byte stream by piping it into ffmpeg's stdin."""
    return EncodeSession(options, pipe_reader=reader, **kwargs)

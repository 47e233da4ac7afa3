"""
DCA wire format.

A DCA stream is an optional metadata prologue followed by audio frames:

    prologue: b"DCA" + version digit | int32 LE length | UTF-8 JSON
    frame:    int16 LE length | Opus packet

The layout is the same whether the stream goes to a pipe, a file or a socket.
"""

from __future__ import annotations

import json
import logging
import struct
from typing import BinaryIO, Iterator, Optional, Tuple

from dca import FORMAT_VERSION
from dca.audio.metadata import Metadata
from dca.errors import EndOfStream, FormatError, MetadataParseError, NotDcaError, ShortReadError
from dca.sources.base import OpusReader

logger = logging.getLogger(__name__)

MAGIC = b"DCA"
FRAME_HEADER = struct.Struct("<h")
PROLOGUE_LENGTH = struct.Struct("<i")

# Largest payload a signed 16-bit length prefix can describe
MAX_FRAME_SIZE = 32767

DEFAULT_FRAME_DURATION_SEC = 0.020


def read_exact(reader: BinaryIO, size: int) -> bytes:
    """
    Read exactly `size` bytes, looping over short reads.

    Returns fewer bytes only when the reader hits end of stream.
    """
    if size == 0:
        return b""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = reader.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def encode_frame(payload: bytes) -> bytes:
    """
    Prefix an Opus packet with its int16 little-endian length.

    Raises:
        ValueError: If the payload does not fit a signed 16-bit length
    """
    if len(payload) > MAX_FRAME_SIZE:
        raise ValueError(f"Frame too large: {len(payload)} bytes (max {MAX_FRAME_SIZE})")
    return FRAME_HEADER.pack(len(payload)) + bytes(payload)


def decode_frame(reader: BinaryIO) -> bytes:
    """
    Read one frame and return its payload (without the length prefix).

    Raises:
        EndOfStream: Clean end of stream at a frame boundary
        ShortReadError: Stream ended inside the length prefix or the payload
        FormatError: Negative length prefix
    """
    header = read_exact(reader, FRAME_HEADER.size)
    if not header:
        raise EndOfStream()
    if len(header) < FRAME_HEADER.size:
        raise ShortReadError(FRAME_HEADER.size, len(header))

    (size,) = FRAME_HEADER.unpack(header)
    if size < 0:
        raise FormatError(f"Negative frame length: {size}")

    payload = read_exact(reader, size)
    if len(payload) < size:
        raise ShortReadError(size, len(payload))
    return payload


def iter_frames(reader: BinaryIO) -> Iterator[bytes]:
    """Yield frame payloads until a clean end of stream."""
    while True:
        try:
            yield decode_frame(reader)
        except EndOfStream:
            return


def encode_prologue(metadata: Metadata, version: int = FORMAT_VERSION) -> bytes:
    """Build the magic header, length and JSON metadata block."""
    body = metadata.to_json()
    return MAGIC + str(version).encode("ascii") + PROLOGUE_LENGTH.pack(len(body)) + body


def decode_prologue(reader: BinaryIO) -> Tuple[int, Metadata]:
    """
    Read the metadata prologue.

    Returns:
        (format_version, metadata)

    Raises:
        EndOfStream: Reader was empty
        NotDcaError: First three bytes are not b"DCA"
        MetadataParseError: Version digit or JSON body does not parse
        ShortReadError: Prologue truncated
    """
    fingerprint = read_exact(reader, 4)
    if not fingerprint:
        raise EndOfStream()
    if fingerprint[:3] != MAGIC:
        raise NotDcaError("DCA Magic header not found, either not dca or raw dca frames")
    if len(fingerprint) < 4:
        raise ShortReadError(4, len(fingerprint))

    try:
        version = int(fingerprint[3:].decode("ascii"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MetadataParseError(f"Invalid format version {fingerprint[3:]!r}: {e}") from e

    raw_len = read_exact(reader, PROLOGUE_LENGTH.size)
    if len(raw_len) < PROLOGUE_LENGTH.size:
        raise ShortReadError(PROLOGUE_LENGTH.size, len(raw_len))
    (length,) = PROLOGUE_LENGTH.unpack(raw_len)
    if length < 0:
        raise MetadataParseError(f"Negative metadata length: {length}")

    body = read_exact(reader, length)
    if len(body) < length:
        raise ShortReadError(length, len(body))

    try:
        metadata = Metadata.from_json(body)
    except (UnicodeDecodeError, json.JSONDecodeError, ValueError, TypeError) as e:
        raise MetadataParseError(f"Invalid metadata JSON: {e}") from e
    return version, metadata


class Decoder(OpusReader):
    """
    Reads a DCA stream from any binary reader.

    Call read_metadata() first when the stream carries a prologue; raw
    streams go straight to opus_frame().
    """

    def __init__(self, reader: BinaryIO, frame_duration: Optional[float] = None) -> None:
        self._reader = reader
        self._frame_duration = frame_duration
        self.metadata: Optional[Metadata] = None
        self.format_version: Optional[int] = None

    def read_metadata(self) -> Metadata:
        self.format_version, self.metadata = decode_prologue(self._reader)
        logger.debug(f"Read DCA{self.format_version} metadata prologue")
        return self.metadata

    def opus_frame(self) -> bytes:
        return decode_frame(self._reader)

    def frame_duration(self) -> float:
        if self._frame_duration is not None:
            return self._frame_duration
        opus = self.metadata.opus if self.metadata is not None else None
        if opus is not None and opus.channels > 0 and opus.frame_size > 0:
            # frame_size counts 960 samples per channel per 20ms
            return opus.frame_size / opus.channels / 960 * DEFAULT_FRAME_DURATION_SEC
        return DEFAULT_FRAME_DURATION_SEC

    def __iter__(self) -> Iterator[bytes]:
        return self.opus_frames()

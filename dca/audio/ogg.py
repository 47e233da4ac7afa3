"""
Ogg page reader.

Reads ffmpeg's Ogg output one page at a time. A page is a 27-byte
header, a segment table (one length byte per segment) and the segment
data. Packets span segments: a 255-byte segment continues the packet,
anything shorter ends it. Reassembly into packets is the caller's job.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterator, List, Optional, Tuple

from dca.audio.wire import read_exact
from dca.errors import OggFormatError

CAPTURE_PATTERN = b"OggS"
MAX_SEGMENT_SIZE = 255

# capture(4) version(1) header_type(1) granule(8) serial(4) sequence(4) crc(4) segments(1)
PAGE_HEADER = struct.Struct("<4sBBqIIIB")
CRC_OFFSET = 22

HEADER_TYPE_CONTINUED = 0x01
HEADER_TYPE_BOS = 0x02
HEADER_TYPE_EOS = 0x04


def _build_crc_table() -> List[int]:
    table = []
    for i in range(256):
        r = i << 24
        for _ in range(8):
            if r & 0x80000000:
                r = ((r << 1) ^ 0x04C11DB7) & 0xFFFFFFFF
            else:
                r = (r << 1) & 0xFFFFFFFF
        table.append(r)
    return table


_CRC_TABLE = _build_crc_table()


def ogg_crc(data: bytes) -> int:
    """Ogg page checksum: CRC-32, poly 0x04C11DB7, no reflection, zero init."""
    crc = 0
    for byte in data:
        crc = ((crc << 8) & 0xFFFFFFFF) ^ _CRC_TABLE[((crc >> 24) & 0xFF) ^ byte]
    return crc


@dataclass(frozen=True)
class OggPage:
    header_type: int
    granule_position: int
    serial: int
    sequence: int
    segment_table: Tuple[int, ...]
    data: bytes

    def segments(self) -> Iterator[bytes]:
        """Yield each segment's bytes in table order."""
        pos = 0
        for size in self.segment_table:
            yield self.data[pos:pos + size]
            pos += size

    def to_bytes(self) -> bytes:
        """Serialize with a freshly computed checksum."""
        header = PAGE_HEADER.pack(
            CAPTURE_PATTERN,
            0,
            self.header_type,
            self.granule_position,
            self.serial,
            self.sequence,
            0,
            len(self.segment_table),
        )
        raw = bytearray(header + bytes(self.segment_table) + self.data)
        struct.pack_into("<I", raw, CRC_OFFSET, ogg_crc(bytes(raw)))
        return bytes(raw)


class OggPageReader:
    """
    Pulls pages off a binary stream.

    read_page() returns None on a clean end of stream (at a page boundary)
    and raises OggFormatError for anything malformed or truncated.
    """

    def __init__(self, reader: BinaryIO, verify_crc: bool = True) -> None:
        self._reader = reader
        self._verify_crc = verify_crc
        self.pages_read = 0

    def read_page(self) -> Optional[OggPage]:
        header = read_exact(self._reader, PAGE_HEADER.size)
        if not header:
            return None
        if len(header) < PAGE_HEADER.size:
            raise OggFormatError(f"Truncated page header ({len(header)} of {PAGE_HEADER.size} bytes)")

        capture, version, header_type, granule, serial, sequence, crc, n_segments = PAGE_HEADER.unpack(header)
        if capture != CAPTURE_PATTERN:
            raise OggFormatError(f"Missing capture pattern, got {capture!r}")
        if version != 0:
            raise OggFormatError(f"Unsupported stream structure version {version}")

        table = read_exact(self._reader, n_segments)
        if len(table) < n_segments:
            raise OggFormatError(f"Truncated segment table ({len(table)} of {n_segments} entries)")

        data_len = sum(table)
        data = read_exact(self._reader, data_len)
        if len(data) < data_len:
            raise OggFormatError(f"Truncated page body ({len(data)} of {data_len} bytes)")

        if self._verify_crc:
            raw = bytearray(header + table + data)
            struct.pack_into("<I", raw, CRC_OFFSET, 0)
            computed = ogg_crc(bytes(raw))
            if computed != crc:
                raise OggFormatError(
                    f"Page checksum mismatch (page {sequence}: expected {crc:#010x}, got {computed:#010x})"
                )

        self.pages_read += 1
        return OggPage(
            header_type=header_type,
            granule_position=granule,
            serial=serial,
            sequence=sequence,
            segment_table=tuple(table),
            data=data,
        )

    def __iter__(self) -> Iterator[OggPage]:
        while True:
            page = self.read_page()
            if page is None:
                return
            yield page

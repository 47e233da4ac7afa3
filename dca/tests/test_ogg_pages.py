"""
Tests for the Ogg page reader.
"""

import io
import struct

import pytest

from dca.audio.ogg import CRC_OFFSET, HEADER_TYPE_BOS, OggPage, OggPageReader, ogg_crc
from dca.errors import OggFormatError
from dca.tests.doubles import OPUS_HEAD, lacing, ogg_opus_stream, ogg_pages


def _page(data=b"\x01\x02\x03", sequence=0):
    return OggPage(0, 0, 7, sequence, tuple(lacing(len(data))), data)


class TestOggCrc:
    def test_empty_input(self):
        """The CRC of no bytes is zero."""
        assert ogg_crc(b"") == 0

    def test_known_value(self):
        """The CRC matches the published check value for 123456789."""
        # Non-reflected CRC-32 (poly 0x04C11DB7, init 0, no final xor) of "123456789"
        assert ogg_crc(b"123456789") == 0x89A1897F

    def test_page_checksum_is_written_at_offset_22(self):
        """A serialized page carries its CRC at header offset 22."""
        raw = _page().to_bytes()
        (stored,) = struct.unpack_from("<I", raw, CRC_OFFSET)
        zeroed = bytearray(raw)
        struct.pack_into("<I", zeroed, CRC_OFFSET, 0)
        assert stored == ogg_crc(bytes(zeroed))


class TestOggPageReader:
    def test_reads_page_fields(self):
        """Header fields and body of a page are read back."""
        page = OggPage(HEADER_TYPE_BOS, 0, 1, 0, tuple(lacing(len(OPUS_HEAD))), OPUS_HEAD)
        reader = OggPageReader(io.BytesIO(page.to_bytes()))
        read = reader.read_page()
        assert read == page
        assert read.header_type & HEADER_TYPE_BOS
        assert list(read.segments()) == [OPUS_HEAD]
        assert reader.read_page() is None
        assert reader.pages_read == 1

    def test_clean_eof_returns_none(self):
        """A stream ending on a page boundary yields None."""
        assert OggPageReader(io.BytesIO(b"")).read_page() is None

    def test_iterates_all_pages(self):
        """Iterating the reader yields every page in order."""
        stream = ogg_opus_stream([b"\xfc" * 10, b"\xfc" * 20])
        pages = list(OggPageReader(io.BytesIO(stream)))
        assert [p.sequence for p in pages] == [0, 1, 2]

    def test_segments_follow_table(self):
        """Page segments are cut by the lacing table."""
        page = ogg_pages([b"a" * 600])[0]
        assert page.segment_table == (255, 255, 90)
        assert [len(s) for s in page.segments()] == [255, 255, 90]

    def test_truncated_header(self):
        """A header cut short raises OggFormatError."""
        raw = _page().to_bytes()
        with pytest.raises(OggFormatError, match="header"):
            OggPageReader(io.BytesIO(raw[:10])).read_page()

    def test_truncated_body(self):
        """A body cut short raises OggFormatError."""
        raw = _page(b"x" * 100).to_bytes()
        with pytest.raises(OggFormatError, match="body"):
            OggPageReader(io.BytesIO(raw[:-1])).read_page()

    def test_truncated_segment_table(self):
        """A segment table cut short raises OggFormatError."""
        raw = _page(b"x" * 600).to_bytes()
        with pytest.raises(OggFormatError, match="segment table"):
            OggPageReader(io.BytesIO(raw[:28])).read_page()

    def test_missing_capture_pattern(self):
        """Bytes without OggS raise OggFormatError."""
        raw = b"RIFF" + _page().to_bytes()[4:]
        with pytest.raises(OggFormatError, match="capture pattern"):
            OggPageReader(io.BytesIO(raw)).read_page()

    def test_unsupported_version(self):
        """A stream structure version other than 0 raises OggFormatError."""
        raw = bytearray(_page().to_bytes())
        raw[4] = 1
        with pytest.raises(OggFormatError, match="version"):
            OggPageReader(io.BytesIO(bytes(raw))).read_page()

    def test_checksum_mismatch(self):
        """A page with a corrupted body fails its CRC check."""
        raw = bytearray(_page(b"payload").to_bytes())
        raw[-1] ^= 0xFF
        with pytest.raises(OggFormatError, match="checksum"):
            OggPageReader(io.BytesIO(bytes(raw))).read_page()

    def test_checksum_can_be_skipped(self):
        """With verify_crc off a corrupted page is still returned."""
        raw = bytearray(_page(b"payload").to_bytes())
        raw[-1] ^= 0xFF
        page = OggPageReader(io.BytesIO(bytes(raw)), verify_crc=False).read_page()
        assert page.data[:-1] == b"payloa"

"""
Transcode progress stats.

ffmpeg's -stats output is parsed into EncodeStats snapshots. These are
transcode stats, not playback position: track frames sent yourself for that.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# size=     256kB time=00:00:16.36 bitrate= 128.2kbits/s speed=32.7x
# Newer ffmpeg builds report KiB instead of kB.
_PROGRESS_RE = re.compile(
    r"^size=\s*(?P<size>\d+)\s*(?:kB|KiB)\s+"
    r"time=\s*(?P<hours>\d+):(?P<minutes>\d+):(?P<seconds>\d+(?:\.\d+)?)\s+"
    r"bitrate=\s*(?P<bitrate>\d+(?:\.\d+)?)\s*kbits/s\s+"
    r"speed=\s*(?P<speed>\d+(?:\.\d+)?(?:e[+-]?\d+)?)\s*x"
)


@dataclass(frozen=True)
class EncodeStats:
    size: int = 0  # kB written so far
    duration: float = 0.0  # seconds of input transcoded
    bitrate: float = 0.0  # kbits/s
    speed: float = 0.0  # multiple of real time


def is_progress_line(line: str) -> bool:
    return line.startswith("size=")


def parse_progress_line(line: str) -> EncodeStats:
    """
    Parse one ffmpeg progress line.

    Raises:
        ValueError: If the line is not a well-formed progress line
    """
    match = _PROGRESS_RE.match(line.strip())
    if match is None:
        raise ValueError(f"unrecognised progress line: {line!r}")

    duration = (
        int(match.group("hours")) * 3600
        + int(match.group("minutes")) * 60
        + float(match.group("seconds"))
    )
    return EncodeStats(
        size=int(match.group("size")),
        duration=duration,
        bitrate=float(match.group("bitrate")),
        speed=float(match.group("speed")),
    )

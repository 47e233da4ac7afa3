"""
Source probing for the metadata prologue.

probe_file() runs ffprobe and parses its -show_format JSON.
extract_cover() pulls the first embedded picture out as base64 JPEG.
Both are used for file sources only; pipe sources cannot be probed.
"""

from __future__ import annotations

import base64
import json
import logging
import subprocess
from typing import Optional

from dca.audio.metadata import FFprobeMetadata
from dca.errors import ProbeError

_logger = logging.getLogger(__name__)


def build_probe_cmd(path: str, ffprobe_bin: str = "ffprobe") -> list:
    return [ffprobe_bin, "-v", "quiet", "-print_format", "json", "-show_format", path]


def build_cover_cmd(path: str, ffmpeg_bin: str = "ffmpeg") -> list:
    return [
        ffmpeg_bin,
        "-loglevel", "0",
        "-i", path,
        "-an",
        "-frames:v", "1",
        "-c:v", "mjpeg",
        "-f", "image2pipe",
        "pipe:1",
    ]


def probe_file(
    path: str,
    ffprobe_bin: str = "ffprobe",
    timeout: Optional[float] = 30.0,
    logger: Optional[logging.Logger] = None,
) -> FFprobeMetadata:
    """
    Probe a file with ffprobe.

    logger defaults to this module's logger.

    Raises:
        ProbeError: If ffprobe cannot be run, fails, or prints unparseable JSON
    """
    log = logger if logger is not None else _logger
    cmd = build_probe_cmd(path, ffprobe_bin)
    log.debug(f"Probing {path}")
    try:
        result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL, timeout=timeout)
    except (OSError, subprocess.SubprocessError) as e:
        raise ProbeError(f"RunStart Error: {e}") from e

    if result.returncode != 0:
        raise ProbeError(f"FFprobe Error: exit status {result.returncode} for {path}")

    try:
        return FFprobeMetadata.from_dict(json.loads(result.stdout.decode("utf-8")))
    except (UnicodeDecodeError, ValueError, TypeError) as e:
        raise ProbeError(f"Error unmarshaling the FFprobe JSON: {e}") from e


def extract_cover(
    path: str,
    ffmpeg_bin: str = "ffmpeg",
    timeout: Optional[float] = 30.0,
    logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    """
    Return the embedded cover art as a base64 JPEG, or None if there is none.

    Never raises: a missing or unreadable cover only means no cover.
    """
    log = logger if logger is not None else _logger
    cmd = build_cover_cmd(path, ffmpeg_bin)
    try:
        result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL, timeout=timeout)
    except (OSError, subprocess.SubprocessError) as e:
        log.debug(f"Cover extraction failed for {path}: {e}")
        return None

    if result.returncode != 0 or not result.stdout:
        log.debug(f"No cover art in {path} (exit status {result.returncode})")
        return None
    return base64.b64encode(result.stdout).decode("ascii")

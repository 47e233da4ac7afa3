"""
Configuration management for DCA.

Reads configuration from a .env file and environment variables with sensible defaults.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/dca/dca.env")

logger = logging.getLogger(__name__)


def _load_env_file() -> None:
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("DCA_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _parse_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be an integer)")


def _parse_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be a number)")


def _parse_bool(name: str, default: str) -> bool:
    raw = os.getenv(name, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid {name}: {raw} (must be a boolean)")


@dataclass
class DcaConfig:
    """DCA configuration loaded from .env file and environment variables."""

    # External tools
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    probe_timeout_sec: float = 30.0
    extract_cover: bool = True

    # Frame queue depth (100 frames at 20ms is 2s)
    buffered_frames: int = 100

    # Streaming delivery hand-off bound
    sink_timeout_ms: int = 1000

    # Logging
    log_level: str = "INFO"

    @property
    def sink_timeout_sec(self) -> float:
        return self.sink_timeout_ms / 1000.0

    @classmethod
    def load_config(cls) -> "DcaConfig":
        """
        Load configuration from environment variables.

        Returns:
            DcaConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        ffmpeg_bin = os.getenv("DCA_FFMPEG_BIN", "ffmpeg")
        ffprobe_bin = os.getenv("DCA_FFPROBE_BIN", "ffprobe")
        probe_timeout_sec = _parse_float("DCA_PROBE_TIMEOUT_SEC", "30")
        extract_cover = _parse_bool("DCA_EXTRACT_COVER", "1")

        buffered_frames = _parse_int("DCA_BUFFERED_FRAMES", "100")
        if buffered_frames < 1:
            raise ValueError(f"Invalid DCA_BUFFERED_FRAMES: {buffered_frames} (must be >= 1)")

        sink_timeout_ms = _parse_int("DCA_SINK_TIMEOUT_MS", "1000")
        if sink_timeout_ms <= 0:
            raise ValueError(f"Invalid DCA_SINK_TIMEOUT_MS: {sink_timeout_ms} (must be > 0)")

        log_level = os.getenv("DCA_LOG_LEVEL", "INFO").upper()

        config = cls(
            ffmpeg_bin=ffmpeg_bin,
            ffprobe_bin=ffprobe_bin,
            probe_timeout_sec=probe_timeout_sec,
            extract_cover=extract_cover,
            buffered_frames=buffered_frames,
            sink_timeout_ms=sink_timeout_ms,
            log_level=log_level,
        )
        logger.debug(f"Loaded DCA config: {config}")
        return config

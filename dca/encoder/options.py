"""
Encode options.

EncodeOptions is an immutable snapshot of everything one encode session
needs. validate() is pure: it raises ValidationError naming the first
field out of range and touches nothing else.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace

from dca.errors import ValidationError


class AudioApplication(str, enum.Enum):
    """Opus application profile."""
    VOIP = "voip"  # Favor improved speech intelligibility
    AUDIO = "audio"  # Favor faithfulness to the input
    LOWDELAY = "lowdelay"  # Restrict to only the lowest delay modes


VALID_FRAME_DURATIONS = (20, 40, 60)
VALID_SAMPLE_RATES = (8000, 12000, 16000, 24000, 48000)
VALID_COVER_FORMATS = ("jpeg",)


@dataclass(frozen=True)
class EncodeOptions:
    volume: int = 256  # 256 = normal
    channels: int = 2
    frame_rate: int = 48000  # sample rate
    frame_duration: int = 20  # ms: 20, 40 or 60
    bitrate: int = 64  # kb/s
    packet_loss: int = 1  # expected packet loss percentage
    raw_output: bool = False  # no metadata prologue
    application: AudioApplication = AudioApplication.AUDIO
    cover_format: str = "jpeg"
    compression_level: int = 10  # 0-10, higher is better quality but slower
    buffered_frames: int = 100  # frame queue capacity
    vbr: bool = True
    comment: str = ""

    def pcm_frame_len(self) -> int:
        """PCM samples per frame across all channels (960 per channel per 20ms)."""
        return 960 * self.channels * (self.frame_duration // 20)

    @property
    def frame_duration_sec(self) -> float:
        return self.frame_duration / 1000.0

    def with_changes(self, **changes) -> "EncodeOptions":
        return replace(self, **changes)

    def validate(self) -> None:
        """
        Check every field against its allowed range.

        Raises:
            ValidationError: Naming the offending field
        """
        if not 0 <= self.volume <= 512:
            raise ValidationError("volume", f"out of bounds volume {self.volume} (0-512)")

        if self.frame_duration not in VALID_FRAME_DURATIONS:
            raise ValidationError(
                "frame_duration", f"invalid frame duration {self.frame_duration} (20, 40 or 60 ms)"
            )

        if not 0 <= self.packet_loss <= 100:
            raise ValidationError("packet_loss", f"invalid packet loss percentage {self.packet_loss} (0-100)")

        if self.channels not in (1, 2):
            raise ValidationError("channels", f"invalid channel count {self.channels} (1 or 2)")

        if self.frame_rate not in VALID_SAMPLE_RATES:
            raise ValidationError(
                "frame_rate",
                f"invalid sample rate {self.frame_rate} (one of {', '.join(map(str, VALID_SAMPLE_RATES))})",
            )

        if not 1 <= self.bitrate <= 512:
            raise ValidationError("bitrate", f"invalid bitrate {self.bitrate} kb/s (1-512)")

        if not 0 <= self.compression_level <= 10:
            raise ValidationError(
                "compression_level", f"invalid compression level {self.compression_level} (0-10)"
            )

        if self.buffered_frames < 1:
            raise ValidationError("buffered_frames", f"invalid queue capacity {self.buffered_frames} (>= 1)")

        try:
            AudioApplication(self.application)
        except ValueError:
            raise ValidationError("application", f"invalid application {self.application!r} (voip, audio or lowdelay)")

        if self.cover_format not in VALID_COVER_FORMATS:
            raise ValidationError("cover_format", f"unsupported cover format {self.cover_format!r} (jpeg)")


# Standard options for encoding
STD_ENCODE_OPTIONS = EncodeOptions()

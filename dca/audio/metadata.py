"""
Metadata documents.

Metadata is the JSON prologue written once before any audio frame.
FFprobeMetadata is the subset of ffprobe's -show_format output we read.

Optional fields are None when absent and are left out of the encoded JSON.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dca import FORMAT_VERSION, LIBRARY_VERSION, REPOSITORY_URL


def _prune(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _opt_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return None if value is None else str(value)


def _opt_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    return int(value)


def _section(data: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be an object, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class ToolMetadata:
    name: str = "dca"
    version: str = LIBRARY_VERSION
    url: str = REPOSITORY_URL
    author: str = "jonas747"

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "version": self.version, "url": self.url, "author": self.author}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolMetadata":
        return cls(
            name=str(data.get("name", "")),
            version=str(data.get("version", "")),
            url=str(data.get("url", "")),
            author=str(data.get("author", "")),
        )


@dataclass(frozen=True)
class FormatMetadata:
    """Format identity: DCA format version plus the tool that wrote it."""
    version: int = FORMAT_VERSION
    tool: Optional[ToolMetadata] = field(default_factory=ToolMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return _prune({
            "version": self.version,
            "tool": self.tool.to_dict() if self.tool is not None else None,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormatMetadata":
        tool = _section(data, "tool")
        return cls(
            version=int(data.get("version", 0)),
            tool=ToolMetadata.from_dict(tool) if tool is not None else None,
        )


@dataclass(frozen=True)
class SongMetadata:
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    genre: Optional[str] = None
    comments: Optional[str] = None
    cover: Optional[str] = None  # base64 encoded image

    def to_dict(self) -> Dict[str, Any]:
        return _prune({
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "genre": self.genre,
            "comments": self.comments,
            "cover": self.cover,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SongMetadata":
        return cls(
            title=_opt_str(data, "title"),
            artist=_opt_str(data, "artist"),
            album=_opt_str(data, "album"),
            genre=_opt_str(data, "genre"),
            comments=_opt_str(data, "comments"),
            cover=_opt_str(data, "cover"),
        )


@dataclass(frozen=True)
class OriginMetadata:
    source: Optional[str] = None  # "file" or "pipe"
    bitrate: Optional[int] = None
    channels: Optional[int] = None
    encoding: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _prune({
            "source": self.source,
            "abr": self.bitrate,
            "channels": self.channels,
            "encoding": self.encoding,
            "url": self.url,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OriginMetadata":
        return cls(
            source=_opt_str(data, "source"),
            bitrate=_opt_int(data, "abr"),
            channels=_opt_int(data, "channels"),
            encoding=_opt_str(data, "encoding"),
            url=_opt_str(data, "url"),
        )


@dataclass(frozen=True)
class OpusMetadata:
    bitrate: int = 0  # bits per second
    sample_rate: int = 0
    application: str = ""
    frame_size: int = 0  # PCM samples per frame across all channels
    channels: int = 0
    vbr: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "abr": self.bitrate,
            "sample_rate": self.sample_rate,
            "mode": self.application,
            "frame_size": self.frame_size,
            "channels": self.channels,
            "vbr": self.vbr,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OpusMetadata":
        return cls(
            bitrate=int(data.get("abr", 0)),
            sample_rate=int(data.get("sample_rate", 0)),
            application=str(data.get("mode", "")),
            frame_size=int(data.get("frame_size", 0)),
            channels=int(data.get("channels", 0)),
            vbr=bool(data.get("vbr", False)),
        )


@dataclass(frozen=True)
class Metadata:
    """
    Prologue document.

    Built once at session start and never mutated. `extra` is an open
    extension slot carried through as-is.
    """
    dca: Optional[FormatMetadata] = field(default_factory=FormatMetadata)
    opus: Optional[OpusMetadata] = None
    song_info: Optional[SongMetadata] = None
    origin: Optional[OriginMetadata] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _prune({
            "dca": self.dca.to_dict() if self.dca is not None else None,
            "opus": self.opus.to_dict() if self.opus is not None else None,
            "info": self.song_info.to_dict() if self.song_info is not None else None,
            "origin": self.origin.to_dict() if self.origin is not None else None,
            "extra": dict(self.extra),
        })

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Metadata":
        """
        Build from a decoded JSON object.

        Raises:
            ValueError: If a section has the wrong shape or a numeric field is not numeric
        """
        if not isinstance(data, dict):
            raise ValueError(f"metadata must be a JSON object, got {type(data).__name__}")
        dca_section = _section(data, "dca")
        opus = _section(data, "opus")
        info = _section(data, "info")
        origin = _section(data, "origin")
        extra = _section(data, "extra")
        return cls(
            dca=FormatMetadata.from_dict(dca_section) if dca_section is not None else None,
            opus=OpusMetadata.from_dict(opus) if opus is not None else None,
            song_info=SongMetadata.from_dict(info) if info is not None else None,
            origin=OriginMetadata.from_dict(origin) if origin is not None else None,
            extra=dict(extra) if extra is not None else {},
        )

    @classmethod
    def from_json(cls, raw: bytes) -> "Metadata":
        return cls.from_dict(json.loads(raw.decode("utf-8")))


@dataclass(frozen=True)
class FFprobeTags:
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    genre: Optional[str] = None
    date: Optional[str] = None
    track: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FFprobeTags":
        # Tag keys are case-insensitive in practice (ID3 vs Vorbis comments)
        lowered = {str(k).lower(): v for k, v in data.items()}
        return cls(
            title=_opt_str(lowered, "title"),
            artist=_opt_str(lowered, "artist"),
            album=_opt_str(lowered, "album"),
            genre=_opt_str(lowered, "genre"),
            date=_opt_str(lowered, "date"),
            track=_opt_str(lowered, "track"),
        )


@dataclass(frozen=True)
class FFprobeFormat:
    filename: Optional[str] = None
    format_name: Optional[str] = None
    format_long_name: Optional[str] = None
    duration: Optional[str] = None
    size: Optional[str] = None
    bitrate: Optional[str] = None
    tags: FFprobeTags = field(default_factory=FFprobeTags)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FFprobeFormat":
        tags = _section(data, "tags")
        bitrate = data.get("bit_rate", data.get("bitrate"))
        return cls(
            filename=_opt_str(data, "filename"),
            format_name=_opt_str(data, "format_name"),
            format_long_name=_opt_str(data, "format_long_name"),
            duration=_opt_str(data, "duration"),
            size=_opt_str(data, "size"),
            bitrate=None if bitrate is None else str(bitrate),
            tags=FFprobeTags.from_dict(tags) if tags is not None else FFprobeTags(),
        )


@dataclass(frozen=True)
class FFprobeMetadata:
    format: FFprobeFormat = field(default_factory=FFprobeFormat)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FFprobeMetadata":
        if not isinstance(data, dict):
            raise ValueError(f"ffprobe output must be a JSON object, got {type(data).__name__}")
        fmt = _section(data, "format")
        return cls(format=FFprobeFormat.from_dict(fmt) if fmt is not None else FFprobeFormat())

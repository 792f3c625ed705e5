"""
Media inspection through ffprobe.

Only the fields the pipeline dispatches on are kept: the container duration
and, per stream, its index, type, codec, size, bitrate and language/title tags.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from hlsfy.errors import ToolError

logger = logging.getLogger(__name__)


@dataclass
class StreamInfo:
    index: int
    codec_type: str
    codec_name: str = ""
    width: int = 0
    height: int = 0
    bit_rate: Optional[int] = None
    language: Optional[str] = None
    title: Optional[str] = None
    attached_pic: bool = False


@dataclass
class MediaInfo:
    duration: float = 0.0
    format_name: str = ""
    streams: List[StreamInfo] = field(default_factory=list)

    @property
    def video_streams(self) -> List[StreamInfo]:
        return [s for s in self.streams if s.codec_type == "video"]

    @property
    def audio_streams(self) -> List[StreamInfo]:
        return [s for s in self.streams if s.codec_type == "audio"]


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_media_info(raw_info: Dict[str, Any]) -> MediaInfo:
    """Build a MediaInfo from ffprobe's ``-print_format json`` output."""
    format_info = raw_info.get("format", {}) or {}
    try:
        duration = float(format_info.get("duration", 0) or 0)
    except (TypeError, ValueError):
        duration = 0.0

    streams = []
    for stream in raw_info.get("streams", []) or []:
        tags = stream.get("tags", {}) or {}
        streams.append(StreamInfo(
            index=int(stream.get("index", -1)),
            codec_type=stream.get("codec_type", ""),
            codec_name=stream.get("codec_name", "") or "",
            width=_to_int(stream.get("width")) or 0,
            height=_to_int(stream.get("height")) or 0,
            bit_rate=_to_int(stream.get("bit_rate")),
            language=tags.get("language"),
            title=tags.get("title"),
            attached_pic=bool((stream.get("disposition", {}) or {}).get("attached_pic")),
        ))

    return MediaInfo(
        duration=duration,
        format_name=format_info.get("format_name", "") or "",
        streams=streams,
    )


class FFprobeRunner:
    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path

    def build_command(self, source: str) -> List[str]:
        return [
            self.ffprobe_path,
            "-hide_banner",
            "-loglevel", "error",
            "-show_format",
            "-show_streams",
            "-print_format", "json",
            source,
        ]

    async def probe(self, source: str) -> MediaInfo:
        process = await asyncio.create_subprocess_exec(
            *self.build_command(source),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            raise ToolError("ffprobe", process.returncode, stderr.decode("utf-8", errors="ignore"))

        try:
            raw_info = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ToolError("ffprobe", 0, f"unparseable output: {e}") from e

        info = parse_media_info(raw_info)
        logger.info(f"ffprobe found {len(info.streams)} stream(s), duration {info.duration}s in {source}")
        return info

"""
FFmpeg command building and execution.

Each method produces exactly one output file (or one folder of thumbnails)
and raises ToolError when ffmpeg fails; retries are the caller's business.
"""

import logging
import os
from typing import List, Tuple

from hlsfy.ffprobe import StreamInfo
from hlsfy.process import run_tool
from hlsfy.schemas import Quality

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_BITRATE = "128k"
THUMBNAIL_SIZE = "320x240"
THUMBNAIL_PATTERN = "thumbnails_%03d.jpg"


def even(value: int) -> int:
    """Round odd dimensions up; yuv420p needs both sides divisible by two."""
    return value + 1 if value % 2 else value


def scaled_size(stream: StreamInfo, height: int) -> Tuple[int, int]:
    """Target (width, height) keeping the stream's aspect ratio."""
    if not stream.width or not stream.height:
        return -2, even(height)
    # halves round up
    width = int(stream.width * height / stream.height + 0.5)
    return even(width), even(height)


class FFmpegRunner:
    def __init__(self, ffmpeg_path: str = "ffmpeg", loglevel: str = "warning"):
        self.ffmpeg_path = ffmpeg_path
        self.loglevel = loglevel

    def _base(self, source: str) -> List[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.loglevel,
            "-y",
            "-i", source,
        ]

    def video_command(self, source: str, stream: StreamInfo, quality: Quality, output: str) -> List[str]:
        width, height = scaled_size(stream, quality.height)
        return self._base(source) + [
            "-map", f"0:{stream.index}",
            "-c:v", "libx264",
            "-b:v", f"{quality.bitrate}k",
            "-vf", f"scale={width}:{height}",
            "-pix_fmt", "yuv420p",
            output,
        ]

    def audio_command(self, source: str, stream: StreamInfo, output: str) -> List[str]:
        bitrate = str(stream.bit_rate) if stream.bit_rate else DEFAULT_AUDIO_BITRATE
        return self._base(source) + [
            "-map", f"0:{stream.index}",
            "-c:a", "aac",
            "-ac", "1",
            "-b:a", bitrate,
            output,
        ]

    def thumbnails_command(
        self, source: str, stream: StreamInfo, folder: str, count: int, interval: int
    ) -> List[str]:
        # first frame, then one frame each time `interval` seconds have passed
        select = f"select='isnan(prev_selected_t)+gte(t-prev_selected_t\\,{interval})'"
        width, height = THUMBNAIL_SIZE.split("x")
        return self._base(source) + [
            "-map", f"0:{stream.index}",
            "-an", "-sn",
            "-vf", f"{select},scale={width}:{height}",
            "-vsync", "vfr",
            "-frames:v", str(count),
            "-q:v", "4",
            os.path.join(folder, THUMBNAIL_PATTERN),
        ]

    async def encode_video(self, source: str, stream: StreamInfo, quality: Quality, output: str) -> str:
        logger.info(f"[{quality.height}] encoding {source} at {quality.bitrate}k")
        await run_tool("ffmpeg", self.video_command(source, stream, quality, output))
        return output

    async def encode_audio(self, source: str, stream: StreamInfo, output: str) -> str:
        logger.info(f"[{stream.language or 'und'}] extracting audio stream {stream.index} from {source}")
        await run_tool("ffmpeg", self.audio_command(source, stream, output))
        return output

    async def extract_thumbnails(
        self, source: str, stream: StreamInfo, folder: str, count: int, interval: int
    ) -> List[str]:
        os.makedirs(folder, exist_ok=True)
        await run_tool("ffmpeg", self.thumbnails_command(source, stream, folder, count, interval))
        return sorted(
            os.path.join(folder, name) for name in os.listdir(folder) if name.endswith(".jpg")
        )

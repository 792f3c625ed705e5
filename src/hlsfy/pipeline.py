"""
The conversion of one job: source URL in, uploaded HLS bundle out.

The pipeline downloads and probes the source, encodes every audio stream and
every accepted quality while normalizing the subtitles (all concurrently,
failing fast), packages the results with thumbnails into one bundle and
uploads it. The working directory is removed whatever the outcome.
"""

import logging
import os
import shutil
import tempfile
import time
from typing import Awaitable, Callable, List, Optional, TypeVar

import filetype

from hlsfy.config import Settings
from hlsfy.errors import InputError, ToolError, UnsupportedSubtitle
from hlsfy.ffmpeg import FFmpegRunner
from hlsfy.ffprobe import FFprobeRunner, MediaInfo, StreamInfo
from hlsfy.hls import AudioTrack, BundleBuilder, SubtitleTrack, VideoTrack
from hlsfy.log import format_time
from hlsfy.packager import PackagerRunner
from hlsfy.schemas import (
    AudioTrackInfo,
    ConversionRequest,
    EncodedAudio,
    EncodedVideo,
    ExtraUpload,
    OutputMetadata,
    Quality,
    SubtitleSource,
)
from hlsfy.storage import Uploader, extension_of, object_key
from hlsfy.subtitles import normalize_subtitle
from hlsfy.transfers import Downloader, TransferQueue, gather_or_cancel

logger = logging.getLogger(__name__)

T = TypeVar("T")

STILL_IMAGE_CODECS = {"mjpeg", "png", "bmp"}
THUMBNAIL_INTERVAL_SECONDS = 5


def select_video_stream(info: MediaInfo) -> StreamInfo:
    """Tallest real video stream; the first one wins a tie."""
    candidates = [
        s for s in info.video_streams
        if not s.attached_pic and s.codec_name not in STILL_IMAGE_CODECS
    ]
    if not candidates:
        raise InputError("no video tracks found")
    return max(candidates, key=lambda s: s.height or 0)


def filter_qualities(qualities: List[Quality], source_height: int) -> List[Quality]:
    """Drop qualities that would upscale the source."""
    return [q for q in qualities if q.height <= source_height]


def thumbnail_timemarks(duration: float, interval: int = THUMBNAIL_INTERVAL_SECONDS) -> List[float]:
    marks = [0.0]
    t = interval
    while t < duration:
        marks.append(float(t))
        t += interval
    return marks


def delete_folder(path: str) -> None:
    logger.info(f"Deleting {path}")
    shutil.rmtree(path, ignore_errors=True)


async def with_retry(label: str, max_retry: int, attempt_once: Callable[[], Awaitable[T]]) -> T:
    attempt = 0
    while True:
        try:
            return await attempt_once()
        except ToolError as e:
            if attempt >= max_retry:
                raise
            attempt += 1
            logger.warning(f"[{label}] {e} - retrying ({attempt}/{max_retry})...")


class ConversionPipeline:
    def __init__(
        self,
        settings: Settings,
        ffprobe: Optional[FFprobeRunner] = None,
        ffmpeg: Optional[FFmpegRunner] = None,
        packager: Optional[PackagerRunner] = None,
        downloader: Optional[Downloader] = None,
        uploader_factory: Optional[Callable[..., Uploader]] = None,
    ):
        self.settings = settings
        self.max_retry = settings.max_retry
        self.ffprobe = ffprobe or FFprobeRunner(settings.ffprobe_path)
        self.ffmpeg = ffmpeg or FFmpegRunner(settings.ffmpeg_path)
        self.bundle_builder = BundleBuilder(packager or PackagerRunner(settings.resolve_packager()))
        self.downloader = downloader or Downloader(
            TransferQueue("download", settings.download_concurrency, settings.max_retry)
        )
        self.upload_queue = TransferQueue("upload", settings.upload_concurrency, settings.max_retry)
        self.uploader_factory = uploader_factory or Uploader

    async def run(self, request: ConversionRequest) -> OutputMetadata:
        os.makedirs(self.settings.temp_dir, exist_ok=True)
        base_folder = tempfile.mkdtemp(prefix="_", dir=self.settings.temp_dir)
        start = time.monotonic()
        try:
            return await self._convert(request, base_folder)
        except Exception:
            logger.error(f"Conversion of {request.source} failed in {format_time((time.monotonic() - start) * 1000)}")
            raise
        finally:
            delete_folder(base_folder)

    async def download_source(self, url: str, base_folder: str) -> str:
        raw_path = os.path.join(base_folder, "source")
        logger.info(f"Downloading source {url} to {raw_path}")
        await self.downloader.download(url, raw_path)

        kind = filetype.guess(raw_path)
        if kind is None:
            raise InputError(f"file type not found for {url}")

        # ffmpeg and the packager dispatch on the extension
        source_path = f"{raw_path}.{kind.extension}"
        os.rename(raw_path, source_path)
        return source_path

    async def convert_video(self, source: str, stream: StreamInfo, quality: Quality, base_folder: str) -> VideoTrack:
        async def attempt():
            folder = tempfile.mkdtemp(prefix="_", dir=base_folder)
            return await self.ffmpeg.encode_video(source, stream, quality, os.path.join(folder, "video.mp4"))

        path = await with_retry(str(quality.height), self.max_retry, attempt)
        return VideoTrack(path=path, height=quality.height, bitrate=quality.bitrate)

    async def extract_audio(self, source: str, stream: StreamInfo, base_folder: str) -> AudioTrack:
        lang = stream.language or "und"

        async def attempt():
            folder = tempfile.mkdtemp(prefix="_", dir=base_folder)
            return await self.ffmpeg.encode_audio(source, stream, os.path.join(folder, "audio.mp4"))

        path = await with_retry(lang, self.max_retry, attempt)
        return AudioTrack(path=path, lang=lang, title=stream.title)

    async def convert_subtitle(self, subtitle: SubtitleSource, base_folder: str) -> Optional[SubtitleTrack]:
        try:
            path = await normalize_subtitle(subtitle, base_folder, self.downloader.download)
        except UnsupportedSubtitle as e:
            logger.warning(f"Skipping subtitle {subtitle.url}: {e}")
            return None
        return SubtitleTrack(path=path, language=subtitle.language)

    async def _convert(self, request: ConversionRequest, base_folder: str) -> OutputMetadata:
        source_path = await self.download_source(request.source, base_folder)
        info = await self.ffprobe.probe(source_path)

        video_stream = select_video_stream(info)
        qualities = filter_qualities(request.qualities, video_stream.height)
        if not qualities:
            raise InputError(f"no quality fits the {video_stream.height}p source")

        audio_streams = info.audio_streams
        logger.info(
            f"Converting {request.source}: {len(qualities)} quality(ies), "
            f"{len(audio_streams)} audio track(s), {len(request.subtitles)} subtitle(s)"
        )

        start = time.monotonic()
        results = await gather_or_cancel(
            [self.extract_audio(source_path, s, base_folder) for s in audio_streams]
            + [self.convert_subtitle(s, base_folder) for s in request.subtitles]
            + [self.convert_video(source_path, video_stream, q, base_folder) for q in qualities]
        )
        logger.info(f"All tracks processed in {format_time((time.monotonic() - start) * 1000)}")

        audios = [r for r in results if isinstance(r, AudioTrack)]
        subtitles = [r for r in results if isinstance(r, SubtitleTrack)]
        videos = [r for r in results if isinstance(r, VideoTrack)]

        timemarks = thumbnail_timemarks(info.duration)
        thumbnails = await self.ffmpeg.extract_thumbnails(
            source_path,
            video_stream,
            tempfile.mkdtemp(prefix="_thumbnails", dir=base_folder),
            len(timemarks),
            THUMBNAIL_INTERVAL_SECONDS,
        )

        bundle = tempfile.mkdtemp(prefix="_", dir=base_folder)
        await self.bundle_builder.build(
            bundle, videos, audios, subtitles, request.default_audio_lang, thumbnails
        )

        uploader = self.uploader_factory(self.upload_queue, request.s3)
        await uploader.upload_tree(bundle)

        encoded_audios, encoded_videos = await self.upload_extras(request, uploader, audios, videos)

        return OutputMetadata(
            source_duration=info.duration,
            audio_tracks=[AudioTrackInfo(lang=a.lang, title=a.title) for a in audios],
            qualities=[Quality(height=v.height, bitrate=v.bitrate) for v in videos],
            encoded_audios=encoded_audios,
            encoded_videos=encoded_videos,
        )

    async def upload_extras(self, request, uploader, audios, videos):
        encoded_audios: List[EncodedAudio] = []
        encoded_videos: List[EncodedVideo] = []
        uploads = []

        if ExtraUpload.ENCODED_AUDIOS in request.extra_uploads:
            for audio in audios:
                key = object_key(request.s3.path, audio.lang or "und", f"encoded_audio{extension_of(audio.path)}")
                encoded_audios.append(EncodedAudio(key=key, lang=audio.lang, title=audio.title))
                uploads.append(uploader.upload_file(audio.path, key))

        if ExtraUpload.ENCODED_VIDEOS in request.extra_uploads:
            for video in videos:
                key = object_key(request.s3.path, str(video.height), f"encoded_video{extension_of(video.path)}")
                encoded_videos.append(EncodedVideo(key=key, height=video.height, bitrate=video.bitrate))
                uploads.append(uploader.upload_file(video.path, key))

        await self.upload_queue.drain(uploads)
        return encoded_audios, encoded_videos

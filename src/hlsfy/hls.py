"""
Adaptive bundle assembly.

Every produced track gets its own folder inside the bundle, the packager turns
them into segments plus one master playlist, and the thumbnail images are
attached as a sub-playlist referenced by a custom master tag.
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass
from typing import List, Optional

from hlsfy.packager import PackagerRunner

logger = logging.getLogger(__name__)

MASTER_PLAYLIST = "playlist.m3u8"
THUMBNAILS_FOLDER = "thumbnails"
THUMBNAILS_PLAYLIST = "thumbnails.m3u8"
THUMBNAIL_DURATION = 5


@dataclass
class VideoTrack:
    path: str
    height: int
    bitrate: int


@dataclass
class AudioTrack:
    path: str
    lang: str
    title: Optional[str] = None


@dataclass
class SubtitleTrack:
    path: str
    language: str


@dataclass
class TrackOutput:
    source: str
    folder: str
    playlist: str


def slugify(text: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", text.lower(), flags=re.UNICODE)
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug or "und"


def primary_subtag(lang: str) -> str:
    """``pt-BR`` -> ``pt``; the comparison key for language matching."""
    return re.split(r"[-_]", lang.strip(), maxsplit=1)[0].lower()


def allocate_folder(bundle: str, name: str, fallback: str) -> str:
    """Create ``bundle/name``, or ``bundle/fallback`` when ``name`` is already taken."""
    folder = os.path.join(bundle, name)
    if os.path.exists(folder):
        folder = os.path.join(bundle, fallback)
    os.makedirs(folder, exist_ok=True)
    return folder


def default_audio_language(audios: List[AudioTrack], requested: str) -> Optional[str]:
    """Language tag of the first audio track sharing the requested primary subtag.

    Undetermined tracks never match; no match means no default flag at all.
    """
    wanted = primary_subtag(requested or "und")
    for audio in audios:
        if audio.lang == "und":
            continue
        if primary_subtag(audio.lang) == wanted:
            return audio.lang
    return None


def audio_descriptor(track: TrackOutput, title: Optional[str]) -> str:
    descriptor = (
        f"in={track.source},stream=audio,segment_template={track.folder}/$Number$.ts,"
        f"playlist_name={track.playlist},hls_group_id=audio"
    )
    if title:
        descriptor += f",hls_name={title}"
    return descriptor


def video_descriptor(track: TrackOutput) -> str:
    return (
        f"in={track.source},stream=video,segment_template={track.folder}/$Number$.ts,"
        f"playlist_name={track.playlist},hls_group_id=video"
    )


def subtitle_descriptor(track: TrackOutput, language: str) -> str:
    return (
        f"in={track.source},stream=text,segment_template={track.folder}/$Number$.webvtt,"
        f"playlist_name={track.playlist},hls_group_id=text,hls_name={primary_subtag(language)}"
    )


def _thumbnail_number(name: str) -> int:
    match = re.search(r"_(\d+)\.(jpg|png)$", name)
    return int(match.group(1)) if match else 0


def write_thumbnails_playlist(folder: str, duration: int = THUMBNAIL_DURATION) -> str:
    files = sorted(
        (f for f in os.listdir(folder) if f.endswith((".jpg", ".png"))),
        key=_thumbnail_number,
    )
    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for name in files:
        lines.append(f"#EXTINF:{duration},")
        lines.append(name)

    path = os.path.join(folder, THUMBNAILS_PLAYLIST)
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")
    return path


def append_thumbnails_tag(master_playlist: str) -> None:
    with open(master_playlist, "a", encoding="utf-8") as f:
        f.write(f"\n#EXT-X-THUMBNAILS:uri={THUMBNAILS_FOLDER}/{THUMBNAILS_PLAYLIST}\n")


class BundleBuilder:
    def __init__(self, packager: PackagerRunner):
        self.packager = packager

    def plan(
        self,
        bundle: str,
        videos: List[VideoTrack],
        audios: List[AudioTrack],
        subtitles: List[SubtitleTrack],
    ) -> List[str]:
        """Create the per-track folders and return packager descriptors (audio, video, text)."""
        descriptors = []

        for i, audio in enumerate(audios):
            name = slugify(audio.title or audio.lang)
            folder = allocate_folder(bundle, name, f"{i}-{name}")
            track = TrackOutput(audio.path, folder, os.path.join(folder, "audio.m3u8"))
            descriptors.append(audio_descriptor(track, audio.title))

        for i, video in enumerate(videos):
            name = str(video.height)
            folder = allocate_folder(bundle, name, f"{i}-{name}")
            track = TrackOutput(video.path, folder, os.path.join(folder, "video.m3u8"))
            descriptors.append(video_descriptor(track))

        for i, subtitle in enumerate(subtitles):
            folder = allocate_folder(bundle, "subtitles", f"subtitles-{i}")
            track = TrackOutput(subtitle.path, folder, os.path.join(folder, "subtitles.m3u8"))
            descriptors.append(subtitle_descriptor(track, subtitle.language))

        return descriptors

    async def build(
        self,
        bundle: str,
        videos: List[VideoTrack],
        audios: List[AudioTrack],
        subtitles: List[SubtitleTrack],
        default_audio_lang: str,
        thumbnails: List[str],
    ) -> str:
        os.makedirs(bundle, exist_ok=True)
        descriptors = self.plan(bundle, videos, audios, subtitles)
        master = os.path.join(bundle, MASTER_PLAYLIST)
        default_language = default_audio_language(audios, default_audio_lang)
        if default_language is None:
            logger.info(f"No audio track matches default language {default_audio_lang}")

        await self.packager.package(descriptors, master, default_language)

        thumbnails_folder = os.path.join(bundle, THUMBNAILS_FOLDER)
        os.makedirs(thumbnails_folder, exist_ok=True)
        for thumbnail in thumbnails:
            shutil.copyfile(thumbnail, os.path.join(thumbnails_folder, os.path.basename(thumbnail)))
        write_thumbnails_playlist(thumbnails_folder)
        append_thumbnails_tag(master)

        logger.info(f"HLS bundle created at {bundle} with {len(thumbnails)} thumbnail(s)")
        return master

"""
Subtitle normalization to WebVTT.

WebVTT sources are kept byte-for-byte, SubRip is converted, and zip/tar
archives are searched for the first caption file they contain. Anything else
raises UnsupportedSubtitle, which the pipeline logs and skips.
"""

import logging
import os
import re
import shutil
import tarfile
import tempfile
import zipfile
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

from hlsfy.errors import UnsupportedSubtitle
from hlsfy.schemas import SubtitleSource

logger = logging.getLogger(__name__)

WEBVTT_EXT = ("vtt", "webvtt")
CONVERTIBLE_EXT = ("srt",)
CAPTION_EXT = WEBVTT_EXT + CONVERTIBLE_EXT
ARCHIVE_EXT = ("zip", "tar", "tar.gz", "tgz")

_SRT_TIMESTAMP = re.compile(r"(\d+):(\d{1,2}):(\d{1,2})[,.](\d{1,3})")


def subtitle_extension(name: str) -> str:
    lower = name.lower()
    if lower.endswith(".tar.gz"):
        return "tar.gz"
    _, ext = os.path.splitext(lower)
    return ext.lstrip(".").strip()


def _vtt_timestamp(match: re.Match) -> str:
    hours, minutes, seconds, millis = match.groups()
    return f"{int(hours):02d}:{int(minutes):02d}:{int(seconds):02d}.{millis.ljust(3, '0')}"


def srt_to_vtt(text: str) -> str:
    """Convert SubRip text to WebVTT, renumbering cues from 1."""
    text = text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    cues = []
    for block in re.split(r"\n\s*\n", text.strip()):
        lines = block.split("\n")
        timing_at = next((i for i, line in enumerate(lines) if "-->" in line), None)
        if timing_at is None:
            continue
        timing = _SRT_TIMESTAMP.sub(_vtt_timestamp, lines[timing_at].strip())
        body = "\n".join(lines[timing_at + 1:])
        cues.append((timing, body))

    out = ["WEBVTT", ""]
    for number, (timing, body) in enumerate(cues, start=1):
        out.append(str(number))
        out.append(timing)
        if body:
            out.append(body)
        out.append("")
    return "\n".join(out) + "\n"


def _first_caption_in_archive(archive_path: str, ext: str) -> Optional[tuple]:
    """Return (member extension, member bytes) of the first caption file, by sorted name."""
    if ext == "zip":
        with zipfile.ZipFile(archive_path) as zf:
            names = sorted(n for n in zf.namelist() if not n.endswith("/"))
            for name in names:
                member_ext = subtitle_extension(name)
                if member_ext in CAPTION_EXT:
                    return member_ext, zf.read(name)
        return None

    with tarfile.open(archive_path) as tf:
        members = sorted((m for m in tf.getmembers() if m.isfile()), key=lambda m: m.name)
        for member in members:
            member_ext = subtitle_extension(member.name)
            if member_ext in CAPTION_EXT:
                return member_ext, tf.extractfile(member).read()
    return None


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def normalize_file(path: str, ext: str, output: str) -> str:
    """Turn a local caption or archive file into WebVTT at ``output``."""
    if ext in WEBVTT_EXT:
        if os.path.abspath(path) != os.path.abspath(output):
            shutil.copyfile(path, output)
        return output

    if ext in CONVERTIBLE_EXT:
        with open(path, "rb") as f:
            vtt = srt_to_vtt(_decode(f.read()))
        with open(output, "w", encoding="utf-8") as f:
            f.write(vtt)
        return output

    if ext in ARCHIVE_EXT:
        try:
            found = _first_caption_in_archive(path, ext)
        except (zipfile.BadZipFile, tarfile.TarError) as e:
            raise UnsupportedSubtitle(f"unreadable archive {os.path.basename(path)}: {e}") from e
        if found is None:
            raise UnsupportedSubtitle(f"no caption file inside {os.path.basename(path)}")
        member_ext, data = found
        member_path = output + ".member." + member_ext
        with open(member_path, "wb") as f:
            f.write(data)
        try:
            return normalize_file(member_path, member_ext, output)
        finally:
            if os.path.exists(member_path):
                os.unlink(member_path)

    raise UnsupportedSubtitle(f"unsupported subtitle extension {ext or '<none>'}")


async def normalize_subtitle(
    subtitle: SubtitleSource,
    base_folder: str,
    download: Callable[[str, str], Awaitable[str]],
) -> str:
    ext = subtitle_extension(urlparse(subtitle.url).path)
    if ext not in CAPTION_EXT + ARCHIVE_EXT:
        raise UnsupportedSubtitle(f"subtitle {subtitle.url} has unsupported extension {ext or '<none>'}")

    folder = tempfile.mkdtemp(prefix="_", dir=base_folder)
    raw_path = os.path.join(folder, f"source.{ext}")
    await download(subtitle.url, raw_path)

    vtt_path = os.path.join(folder, f"{subtitle.language}.vtt")
    normalize_file(raw_path, ext, vtt_path)
    if raw_path != vtt_path and os.path.exists(raw_path):
        os.unlink(raw_path)

    logger.info(f"Subtitle {subtitle.url} ({subtitle.language}) normalized to {vtt_path}")
    return vtt_path

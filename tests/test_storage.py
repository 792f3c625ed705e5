import asyncio
import threading
from pathlib import Path
from typing import Dict, List

import pytest

from hlsfy.errors import TransferError
from hlsfy.schemas import S3Destination
from hlsfy.storage import Uploader, extension_of, object_key
from hlsfy.transfers import TransferQueue


class FakeS3Client:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.objects: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def put_object(self, Bucket: str, Key: str, Body, **extra) -> dict:
        with self._lock:
            if self.failures:
                self.failures -= 1
                raise ConnectionError("slow down")
            self.objects[Key] = {"Bucket": Bucket, "Body": Body.read(), **extra}
        return {}


def destination(**overrides) -> S3Destination:
    values = dict(
        bucket="media", region="us-east-1", access_key_id="AKIA",
        secret_access_key="secret", path="/videos/abc/",
    )
    values.update(overrides)
    return S3Destination(**values)


def test_object_key_joins_without_duplicate_slashes() -> None:
    assert object_key("/videos/abc/", "720", "video.m3u8") == "videos/abc/720/video.m3u8"
    assert object_key("videos", "", "a\\b.ts") == "videos/a/b.ts"


def test_extension_of() -> None:
    assert extension_of("/w/audio.m4a") == ".m4a"
    assert extension_of("/w/audio") == ".mp4"


def test_upload_tree_mirrors_layout(tmp_path: Path) -> None:
    (tmp_path / "720").mkdir()
    (tmp_path / "720" / "1.ts").write_bytes(b"ts")
    (tmp_path / "720" / "video.m3u8").write_text("#EXTM3U")
    (tmp_path / "playlist.m3u8").write_text("#EXTM3U")
    client = FakeS3Client()
    uploader = Uploader(TransferQueue("upload", 50, 3), destination(acl="public-read"), client=client)

    keys = asyncio.run(uploader.upload_tree(str(tmp_path)))

    assert keys == ["videos/abc/720/1.ts", "videos/abc/720/video.m3u8", "videos/abc/playlist.m3u8"]
    assert client.objects["videos/abc/720/1.ts"] == {
        "Bucket": "media", "Body": b"ts", "ContentType": "video/MP2T", "ACL": "public-read",
    }
    assert client.objects["videos/abc/playlist.m3u8"]["ContentType"] == "application/vnd.apple.mpegurl"


def test_upload_file_retries_and_omits_missing_acl(tmp_path: Path) -> None:
    local = tmp_path / "encoded_audio.mp4"
    local.write_bytes(b"aac")
    client = FakeS3Client(failures=2)
    uploader = Uploader(TransferQueue("upload", 1, 3), destination(), client=client)

    key = asyncio.run(uploader.upload_file(str(local), "videos/abc/en/encoded_audio.mp4"))

    assert key == "videos/abc/en/encoded_audio.mp4"
    assert "ACL" not in client.objects[key]


def test_upload_file_exhausted(tmp_path: Path) -> None:
    local = tmp_path / "a.ts"
    local.write_bytes(b"ts")
    uploader = Uploader(TransferQueue("upload", 1, 1), destination(), client=FakeS3Client(failures=5))
    with pytest.raises(TransferError):
        asyncio.run(uploader.upload_file(str(local), "k"))

import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.config import Config as BotoConfig

from hlsfy.schemas import S3Destination
from hlsfy.transfers import TransferQueue

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/MP2T",
    ".vtt": "text/vtt",
    ".webvtt": "text/vtt",
    ".jpg": "image/jpeg",
    ".mp4": "video/mp4",
}


def get_s3_client(s3: S3Destination):
    """SDK client for one job's destination; credentials come with the request."""
    session = boto3.session.Session(
        aws_access_key_id=s3.access_key_id,
        aws_secret_access_key=s3.secret_access_key,
        region_name=s3.region,
    )
    return session.client(
        "s3",
        endpoint_url=s3.endpoint,
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        ),
    )


def object_key(prefix: str, *parts: str) -> str:
    segments = [prefix.strip("/")] + [p.strip("/") for p in parts if p]
    return "/".join(s for s in segments if s).replace("\\", "/")


class Uploader:
    def __init__(self, queue: TransferQueue, s3: S3Destination, client=None):
        self.queue = queue
        self.s3 = s3
        self.client = client or get_s3_client(s3)

    def _put(self, local_path: str, key: str) -> str:
        extra = {}
        content_type = CONTENT_TYPES.get(Path(local_path).suffix.lower())
        if content_type:
            extra["ContentType"] = content_type
        if self.s3.acl:
            extra["ACL"] = self.s3.acl

        with open(local_path, "rb") as body:
            self.client.put_object(Bucket=self.s3.bucket, Key=key, Body=body, **extra)
        logger.debug(f"{key} was uploaded")
        return key

    async def upload_file(self, local_path: str, key: str) -> str:
        return await self.queue.submit(lambda: asyncio.to_thread(self._put, local_path, key), key)

    async def upload_tree(self, local_dir: str, sub_path: Optional[str] = None) -> List[str]:
        """Upload every file under ``local_dir``, relative paths becoming keys under the destination path."""
        base = Path(local_dir)
        uploads = []
        for p in sorted(base.rglob("*")):
            if not p.is_file():
                continue
            rel = p.relative_to(base).as_posix()
            uploads.append(self.upload_file(str(p), object_key(self.s3.path, sub_path or "", rel)))

        keys = await self.queue.drain(uploads)
        logger.info(
            f"{local_dir} uploaded to s3://{self.s3.bucket}/{object_key(self.s3.path, sub_path or '')}"
            f" ({len(keys)} objects)"
        )
        return keys


def extension_of(path: str, default: str = ".mp4") -> str:
    return os.path.splitext(path)[1] or default

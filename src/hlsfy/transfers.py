"""
Bounded transfer pools nested inside one job.

Downloads go through a small pool because they compete for the same link and
source server; uploads go through a wide one because an HLS bundle is many
small objects. Every transfer is retried immediately up to ``max_retry`` times.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, TypeVar

import httpx

from hlsfy.errors import TransferError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHUNK_SIZE = 1024 * 1024


class TransferQueue:
    def __init__(self, name: str, concurrency: int, max_retry: int):
        self.name = name
        self.concurrency = concurrency
        self.max_retry = max_retry
        self._semaphore = asyncio.Semaphore(concurrency)

    async def submit(self, transfer: Callable[[], Awaitable[T]], label: str) -> T:
        """Run ``transfer`` in a free slot, retrying on failure.

        ``transfer`` is a factory so every attempt gets a fresh coroutine.
        """
        async with self._semaphore:
            attempt = 0
            while True:
                try:
                    return await transfer()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if attempt >= self.max_retry:
                        logger.error(f"[{self.name}] {label} failed after {attempt + 1} attempt(s): {e}")
                        raise TransferError(f"{self.name} of {label} failed: {e}") from e
                    attempt += 1
                    logger.warning(f"[{self.name}] {label} - {e} - retrying ({attempt}/{self.max_retry})...")

    async def drain(self, transfers: Iterable[Awaitable[T]]) -> List[T]:
        """Wait for a batch; the first failure cancels the rest and is raised."""
        return await gather_or_cancel(transfers)


async def gather_or_cancel(awaitables: Iterable[Awaitable[T]]) -> List[T]:
    tasks = [asyncio.ensure_future(a) for a in awaitables]
    if not tasks:
        return []
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class Downloader:
    def __init__(self, queue: TransferQueue, timeout: float = 60.0):
        self.queue = queue
        self.timeout = timeout

    async def _fetch(self, url: str, path: str) -> str:
        async with httpx.AsyncClient(follow_redirects=True, timeout=self.timeout) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length") or 0)
                received = 0
                last_percent = -1
                with open(path, "wb") as f:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        received += len(chunk)
                        if total:
                            percent = received * 100 // total
                            if percent != last_percent and percent % 10 == 0:
                                logger.info(f"{url} - {percent}% received")
                                last_percent = percent
        logger.info(f"Downloaded {url} ({received} bytes)")
        return path

    async def download(self, url: str, path: str) -> str:
        return await self.queue.submit(lambda: self._fetch(url, path), url)

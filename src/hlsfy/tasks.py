"""
Job-level worker pool.

Jobs are persisted as pending on submission and handed to a fixed-size thread
pool. Each worker thread drives one job: it flips the row to processing, runs
the conversion (in a child process by default), records the terminal status
and notifies the callback URL. The database, not the pool, says whether work
is outstanding.
"""

import asyncio
import json
import logging
import os
import shutil
import subprocess
import sys
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional

import httpx
from pydantic import ValidationError

from hlsfy.cleanup import clean_temp
from hlsfy.config import Settings
from hlsfy.errors import HlsfyError, JobFailed, JobNotFound, ResubmitRejected
from hlsfy.log import format_time
from hlsfy.models import Job, JobStatus
from hlsfy.schemas import CallbackPayload, ConversionRequest, OutputMetadata
from hlsfy.store import JobStore

logger = logging.getLogger(__name__)

Runner = Callable[[ConversionRequest, int], OutputMetadata]


class ProcessRunner:
    """Runs the pipeline in a fresh interpreter so a crashing codec only takes one job down."""

    def __init__(self, temp_dir: str, python: str = sys.executable):
        self.temp_dir = temp_dir
        self.python = python

    def command(self, params_file: str, result_file: str) -> List[str]:
        return [self.python, "-m", "hlsfy.converter", params_file, result_file]

    def __call__(self, request: ConversionRequest, job_id: int) -> OutputMetadata:
        os.makedirs(self.temp_dir, exist_ok=True)
        folder = tempfile.mkdtemp(prefix="_", dir=self.temp_dir)
        params_file = os.path.join(folder, "params.json")
        result_file = os.path.join(folder, "output-metadata.json")
        try:
            with open(params_file, "w", encoding="utf-8") as f:
                json.dump(request.wire(), f)

            logger.info(f"Running converter for job {job_id}...")
            completed = subprocess.run(self.command(params_file, result_file))
            if completed.returncode != 0:
                raise JobFailed(f"converter exited with code {completed.returncode}")

            with open(result_file, "r", encoding="utf-8") as f:
                return OutputMetadata.model_validate_json(f.read())
        finally:
            shutil.rmtree(folder, ignore_errors=True)


class InProcessRunner:
    """Runs the pipeline on the worker thread itself; no crash isolation."""

    def __init__(self, settings: Settings, pipeline_factory=None):
        self.settings = settings
        if pipeline_factory is None:
            from hlsfy.pipeline import ConversionPipeline
            pipeline_factory = ConversionPipeline
        self.pipeline_factory = pipeline_factory

    def __call__(self, request: ConversionRequest, job_id: int) -> OutputMetadata:
        # a fresh pipeline per run: its sub-queues belong to this thread's event loop
        pipeline = self.pipeline_factory(self.settings)
        return asyncio.run(pipeline.run(request))


@dataclass
class QueueItem:
    request: ConversionRequest
    job_id: int
    attempt: int = 1
    on_start: Optional[Callable[[int], None]] = None
    submitted_at: float = field(default_factory=time.monotonic)


class CallbackNotifier:
    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def __call__(self, url: str, payload: CallbackPayload) -> bool:
        try:
            response = httpx.post(
                url,
                json=payload.model_dump(mode="json", by_alias=True, exclude_none=True),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Failed to send callback {url}: {e}")
            return False
        logger.info(f"Sent callback: {url}")
        return True


class JobQueue:
    def __init__(
        self,
        store: JobStore,
        settings: Settings,
        runner: Optional[Runner] = None,
        notifier: Optional[Callable[[str, CallbackPayload], bool]] = None,
    ):
        self.store = store
        self.settings = settings
        if runner is None:
            runner = ProcessRunner(settings.temp_dir) if settings.isolate_jobs else InProcessRunner(settings)
        self.runner = runner
        self.notifier = notifier or CallbackNotifier()
        self.max_attempts = max(1, settings.max_retry) if settings.retry_jobs else 1
        self.executor = ThreadPoolExecutor(max_workers=settings.concurrency, thread_name_prefix="job")

    def start(self) -> None:
        """Recover from an earlier crash, empty the temp root and replay the seed jobs."""
        self.store.fail_unfinished()
        clean_temp(self.settings.temp_dir)
        logger.info(f"Queue initialized with concurrency {self.settings.concurrency}")

        for item in self.settings.initial_requests():
            try:
                request = ConversionRequest.model_validate(item)
            except ValidationError as e:
                logger.error(f"Ignoring invalid initial item {json.dumps(item)}: {e}")
                continue
            logger.info(f"Initial item detected: {json.dumps(item)}")
            try:
                self.submit(request)
            except HlsfyError as e:
                logger.error(f"Ignoring initial item {json.dumps(item)}: {e}")

    def submit(self, request: ConversionRequest, on_start: Optional[Callable[[int], None]] = None) -> Job:
        if request.process_id is None:
            job = self.store.create(request.source)
        else:
            job = self._reopen(request.process_id)

        self._enqueue(QueueItem(request=request, job_id=job.id, on_start=on_start))
        return job

    def _reopen(self, job_id: int) -> Job:
        """Resubmission keeps the job's identity; only a failed job under the retry ceiling qualifies."""
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        if job.status != JobStatus.FAILED:
            raise ResubmitRejected(f"Job {job_id} is {job.status.value}; only failed jobs can be resubmitted")

        # the first submission plus at most max_retry resubmissions
        max_attempts = self.settings.max_retry + 1
        if job.attempts >= max_attempts:
            raise ResubmitRejected(f"Job {job_id} reached the retry limit of {self.settings.max_retry}")
        if not self.store.reopen(job_id, max_attempts):
            raise ResubmitRejected(f"Job {job_id} was resubmitted concurrently")

        logger.info(f"Resubmitting job {job_id} (attempt {job.attempts + 1}/{max_attempts})")
        return self.store.get(job_id)

    def has_pending(self) -> bool:
        return self.store.has_pending()

    def list_jobs(self, limit: Optional[int] = 100) -> List[Job]:
        return self.store.list(limit)

    def get_job(self, job_id: int) -> Optional[Job]:
        return self.store.get(job_id)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)

    def _enqueue(self, item: QueueItem) -> None:
        self.executor.submit(self._work, item)

    def _work(self, item: QueueItem) -> None:
        try:
            self._process(item)
        except Exception:
            logger.exception(f"Worker crashed on job {item.job_id}")

    def _process(self, item: QueueItem) -> None:
        source = item.request.source
        self.store.set_status(item.job_id, JobStatus.PROCESSING)
        logger.info(f"Start processing {source} of id {item.job_id} (attempt {item.attempt}/{self.max_attempts})")
        if item.on_start:
            try:
                item.on_start(item.job_id)
            except Exception:
                logger.exception(f"on_start hook failed for job {item.job_id}")

        try:
            metadata = self.runner(item.request, item.job_id)
        except Exception as e:
            if item.attempt < self.max_attempts:
                logger.warning(f"Job {item.job_id} failed ({e}), resubmitting")
                retry_request = item.request.model_copy(update={"process_id": item.job_id})
                self._enqueue(replace(item, request=retry_request, attempt=item.attempt + 1, on_start=None))
                return
            logger.error(f"Failed while processing {source} of id {item.job_id}: {e}")
            self._finish(item, JobStatus.FAILED)
            return

        logger.info(f"Success while processing {source} of id {item.job_id}")
        self._finish(item, JobStatus.DONE, metadata)

    def _finish(self, item: QueueItem, status: JobStatus, metadata: Optional[OutputMetadata] = None) -> None:
        self.store.set_status(item.job_id, status)

        if item.request.callback_url:
            payload = CallbackPayload(
                id=item.job_id,
                status=status,
                source_duration=metadata.source_duration if metadata else None,
                params=item.request.wire(),
            )
            self.notifier(item.request.callback_url, payload)

        elapsed = (time.monotonic() - item.submitted_at) * 1000
        logger.info(f"Done processing {item.request.source} of id {item.job_id} in {format_time(elapsed)}")

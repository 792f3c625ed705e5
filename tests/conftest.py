import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from hlsfy.config import Settings
from hlsfy.database import init_db, make_engine, make_session_factory
from hlsfy.schemas import ConversionRequest, OutputMetadata
from hlsfy.store import JobStore


def request_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "source": "http://x/a.mp4",
        "qualities": [{"height": 720, "bitrate": 3000}],
        "s3": {
            "bucket": "media",
            "region": "us-east-1",
            "accessKeyId": "AKIA",
            "secretAccessKey": "secret",
            "path": "videos/abc",
        },
    }
    payload.update(overrides)
    return payload


def make_request(**overrides: Any) -> ConversionRequest:
    return ConversionRequest.model_validate(request_payload(**overrides))


def wait_for(condition: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


class FakeRunner:
    """Stands in for the converter process; blocks until released."""

    def __init__(self, failures: int = 0, blocking: bool = False, duration: float = 12.5):
        self.failures = failures
        self.release = threading.Event()
        if not blocking:
            self.release.set()
        self.duration = duration
        self.calls: List[int] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, request: ConversionRequest, job_id: int) -> OutputMetadata:
        with self._lock:
            self.calls.append(job_id)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            fail = self.failures > 0
            if fail:
                self.failures -= 1
        try:
            self.release.wait(5)
            if fail:
                raise RuntimeError("converter exited with code 1")
            return OutputMetadata(source_duration=self.duration)
        finally:
            with self._lock:
                self.active -= 1


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[tuple] = []

    def __call__(self, url: str, payload: Any) -> bool:
        self.sent.append((url, payload))
        return True


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'db' / 'queue.sqlite'}",
        temp_dir=str(tmp_path / "tmp"),
        ignore_check_process=True,
        concurrency=2,
        max_retry=2,
        check_interval=0.05,
        packager_path="packager",
        sentry_dsn=None,
    )


@pytest.fixture
def store(settings: Settings) -> JobStore:
    engine = make_engine(settings.database_url)
    init_db(engine)
    return JobStore(make_session_factory(engine))

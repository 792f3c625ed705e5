"""Tests for the durable job store."""

from hlsfy.models import JobStatus
from hlsfy.store import JobStore


def test_create_inserts_pending_job_with_increasing_ids(store: JobStore) -> None:
    first = store.create("http://x/a.mp4")
    second = store.create("http://x/b.mp4")
    assert first.status == JobStatus.PENDING
    assert second.id > first.id
    assert store.get(first.id).source == "http://x/a.mp4"


def test_get_missing_job_returns_none(store: JobStore) -> None:
    assert store.get(12345) is None


def test_list_is_most_recent_first_and_limited(store: JobStore) -> None:
    ids = [store.create(f"http://x/{i}.mp4").id for i in range(5)]
    listed = store.list(limit=3)
    assert [job.id for job in listed] == list(reversed(ids))[:3]
    assert len(store.list()) == 5


def test_has_pending_tracks_unfinished_statuses(store: JobStore) -> None:
    assert store.has_pending() is False
    job = store.create("http://x/a.mp4")
    assert store.has_pending() is True
    store.set_status(job.id, JobStatus.PROCESSING)
    assert store.has_pending() is True
    store.set_status(job.id, JobStatus.DONE)
    assert store.has_pending() is False
    other = store.create("http://x/b.mp4")
    store.set_status(other.id, JobStatus.FAILED)
    assert store.has_pending() is False


def test_fail_unfinished_only_touches_pending_and_processing(store: JobStore) -> None:
    pending = store.create("http://x/1.mp4")
    processing = store.create("http://x/2.mp4")
    done = store.create("http://x/3.mp4")
    store.set_status(processing.id, JobStatus.PROCESSING)
    store.set_status(done.id, JobStatus.DONE)

    assert store.fail_unfinished() == 2
    assert store.get(pending.id).status == JobStatus.FAILED
    assert store.get(processing.id).status == JobStatus.FAILED
    assert store.get(done.id).status == JobStatus.DONE
    assert store.has_pending() is False


def test_reopen_only_moves_failed_jobs_below_the_ceiling(store: JobStore) -> None:
    job = store.create("http://x/a.mp4")
    assert job.attempts == 1
    assert store.reopen(job.id, max_attempts=3) is False

    store.set_status(job.id, JobStatus.FAILED)
    assert store.reopen(job.id, max_attempts=3) is True
    # a second resubmission racing the first finds the row pending
    assert store.reopen(job.id, max_attempts=3) is False
    assert store.get(job.id).status == JobStatus.PENDING
    assert store.get(job.id).attempts == 2

    store.set_status(job.id, JobStatus.FAILED)
    assert store.reopen(job.id, max_attempts=3) is True
    store.set_status(job.id, JobStatus.FAILED)
    assert store.reopen(job.id, max_attempts=3) is False
    assert store.get(job.id).attempts == 3
    assert store.reopen(12345, max_attempts=3) is False

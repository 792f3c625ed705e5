import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from hlsfy.models import Job, JobStatus, UNFINISHED

logger = logging.getLogger(__name__)


class JobStore:
    """Durable job rows; the only place job status is read or written."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def create(self, source: str) -> Job:
        with self.session() as db:
            job = Job(status=JobStatus.PENDING, source=source)
            db.add(job)
            db.commit()
            db.refresh(job)
            return job

    def set_status(self, job_id: int, status: JobStatus) -> None:
        with self.session() as db:
            db.execute(update(Job).where(Job.id == job_id).values(status=status))
            db.commit()

    def get(self, job_id: int) -> Optional[Job]:
        with self.session() as db:
            return db.get(Job, job_id)

    def list(self, limit: Optional[int] = 100) -> List[Job]:
        with self.session() as db:
            query = db.query(Job).order_by(Job.id.desc())
            if limit:
                query = query.limit(limit)
            return query.all()

    def reopen(self, job_id: int, max_attempts: int) -> bool:
        """Move a failed job back to pending, counting the attempt.

        The status and attempt guards are part of the UPDATE, so two concurrent
        resubmissions of the same id cannot both succeed.
        """
        with self.session() as db:
            result = db.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.FAILED, Job.attempts < max_attempts)
                .values(status=JobStatus.PENDING, attempts=Job.attempts + 1)
            )
            db.commit()
            return result.rowcount == 1

    def has_pending(self) -> bool:
        with self.session() as db:
            return db.query(Job.id).filter(Job.status.in_(UNFINISHED)).first() is not None

    def fail_unfinished(self) -> int:
        """Mark every pending or processing job as failed; interrupted jobs cannot resume."""
        with self.session() as db:
            result = db.execute(
                update(Job).where(Job.status.in_(UNFINISHED)).values(status=JobStatus.FAILED)
            )
            db.commit()
            if result.rowcount:
                logger.warning(f"Marked {result.rowcount} interrupted job(s) as failed")
            return result.rowcount

from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import enum

Base = declarative_base()

class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"

UNFINISHED = (JobStatus.PENDING, JobStatus.PROCESSING)

class Job(Base):
    __tablename__ = "process_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(
        SQLEnum(JobStatus, values_callable=lambda e: [s.value for s in e], native_enum=False),
        default=JobStatus.PENDING,
        nullable=False,
    )
    source = Column(String, nullable=False)
    attempts = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

"""Job queue store: the render_jobs table and its atomic state transitions.

A job moves pending -> processing -> completed | failed. Every transition is
one conditional UPDATE, so the database (not the caller) decides whether it
happens:

- claim_next_job only takes a pending job, or a processing job whose claim
  is older than the staleness threshold, and bumps claim_generation.
- update_progress, complete_job and fail_job only touch a processing row,
  and only for the current claim_generation when one is given. A worker
  whose job was reclaimed can no longer write to it.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from sqlalchemy import Index, and_, func, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import aliased
from sqlmodel import JSON, TEXT, Column, Field, Session, SQLModel, select

from track_renderer.constants import STALE_AFTER_SECONDS

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RenderJob(SQLModel, table=True):
    """One request to render a track. Rows are never deleted."""

    __tablename__ = "render_jobs"
    __table_args__ = (Index("ix_render_jobs_status_created_at", "status", "created_at"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    track_id: str = Field(index=True)
    user_id: str = Field(index=True)

    status: str = Field(default=JobStatus.PENDING.value)
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    progress: int = Field(default=0)
    stage: str | None = Field(default=None)
    result: dict | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    error: str | None = Field(default=None, sa_column=Column(TEXT, nullable=True))

    worker_id: str | None = Field(default=None)
    claim_generation: int = Field(default=0)  # fencing token

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    claimed_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)


class JobStore:
    """Atomic queue operations over a SQLAlchemy engine."""

    def __init__(
        self,
        engine: Engine,
        stale_after: timedelta = timedelta(seconds=STALE_AFTER_SECONDS),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.stale_after = stale_after
        self.clock = clock

    def create_tables(self) -> None:
        SQLModel.metadata.create_all(self.engine, tables=[RenderJob.__table__])

    # --- producer side ---

    def enqueue(self, track_id: str, user_id: str, payload: dict) -> RenderJob:
        now = self.clock()
        job = RenderJob(
            track_id=track_id,
            user_id=user_id,
            payload=payload,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine, expire_on_commit=False) as session:
            session.add(job)
            session.commit()
        logger.info("Enqueued job %s for track %s", job.id, track_id)
        return job

    # --- worker side ---

    def _eligible(self, job, now: datetime):
        return or_(
            job.status == JobStatus.PENDING.value,
            and_(
                job.status == JobStatus.PROCESSING.value,
                job.claimed_at < now - self.stale_after,
            ),
        )

    def claim_next_job(self, worker_id: str) -> RenderJob | None:
        """Atomically claim the oldest eligible job, or return None.

        The candidate is chosen and taken in one UPDATE statement, and the
        outer WHERE re-checks eligibility, so two workers never get the same
        claim even when they race for the same row.
        """
        now = self.clock()
        # Aliased so the subquery is not correlated to the UPDATE target
        queued = aliased(RenderJob)
        candidate = (
            select(queued.id)
            .where(self._eligible(queued, now))
            .order_by(queued.created_at, queued.id)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(RenderJob)
            .where(RenderJob.id == candidate)
            .where(self._eligible(RenderJob, now))
            .values(
                status=JobStatus.PROCESSING.value,
                worker_id=worker_id,
                claimed_at=now,
                updated_at=now,
                claim_generation=RenderJob.claim_generation + 1,
            )
            .returning(RenderJob.id, RenderJob.claim_generation)
            .execution_options(synchronize_session=False)
        )
        with self.engine.begin() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            return None

        job_id, generation = row
        logger.info("Worker %s claimed job %s (generation %d)", worker_id, job_id, generation)
        return self.get(job_id)

    def _conditional_update(self, job_id: str, claim_generation: int | None, *criteria, **values) -> bool:
        stmt = update(RenderJob).where(
            RenderJob.id == job_id,
            RenderJob.status == JobStatus.PROCESSING.value,
            *criteria,
        )
        if claim_generation is not None:
            stmt = stmt.where(RenderJob.claim_generation == claim_generation)
        stmt = stmt.values(updated_at=self.clock(), **values).execution_options(
            synchronize_session=False
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount == 1

    def update_progress(
        self,
        job_id: str,
        progress: int,
        stage: str | None = None,
        claim_generation: int | None = None,
    ) -> bool:
        """Record progress. A no-op (False) unless the job is processing and progress does not go back."""
        progress = max(0, min(100, int(progress)))
        updated = self._conditional_update(
            job_id,
            claim_generation,
            RenderJob.progress <= progress,
            progress=progress,
            stage=stage,
        )
        if updated:
            logger.debug("Job %s progress %d%% (%s)", job_id, progress, stage)
        return updated

    def complete_job(self, job_id: str, result: dict[str, Any], claim_generation: int | None = None) -> bool:
        """processing -> completed, once. Later calls leave the stored result alone."""
        now = self.clock()
        updated = self._conditional_update(
            job_id,
            claim_generation,
            status=JobStatus.COMPLETED.value,
            result=result,
            error=None,
            progress=100,
            stage="Complete",
            completed_at=now,
        )
        if not updated:
            logger.warning("complete_job(%s) ignored: job is not processing under this claim", job_id)
        return updated

    def fail_job(self, job_id: str, error: str, claim_generation: int | None = None) -> bool:
        """processing -> failed, once. Later calls leave the stored error alone."""
        now = self.clock()
        updated = self._conditional_update(
            job_id,
            claim_generation,
            status=JobStatus.FAILED.value,
            error=error,
            result=None,
            stage="Failed",
            completed_at=now,
        )
        if not updated:
            logger.warning("fail_job(%s) ignored: job is not processing under this claim", job_id)
        return updated

    # --- reads ---

    def get(self, job_id: str) -> RenderJob | None:
        with Session(self.engine, expire_on_commit=False) as session:
            return session.get(RenderJob, job_id)

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        with Session(self.engine) as session:
            rows = session.exec(
                select(RenderJob.status, func.count()).group_by(RenderJob.status)
            ).all()
        for status, count in rows:
            counts[status] = count
        return counts

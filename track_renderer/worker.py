"""Worker orchestrator: claim a batch, render each job, record the outcome."""

import logging
import os
import socket
import threading
import time
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from track_renderer.constants import MAX_JOBS_PER_CYCLE
from track_renderer.engine import SynthesisEngine
from track_renderer.errors import ConfigError, InternalError, RenderError, describe_failure
from track_renderer.store import JobStore, RenderJob, utcnow

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@dataclass
class JobOutcome:
    job_id: str
    status: str  # completed | failed | superseded
    elapsed_seconds: float
    error: str | None = None
    error_kind: str | None = None


@dataclass
class BatchReport:
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    superseded: int = 0
    skipped: bool = False
    outcomes: list[JobOutcome] = field(default_factory=list)

    def record(self, outcome: JobOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == "completed":
            self.completed += 1
        elif outcome.status == "failed":
            self.failed += 1
        else:
            self.superseded += 1


class RenderWorker:
    """Runs batches of jobs, one at a time, against one store and engine.

    Without an engine the worker can only report health.
    """

    def __init__(
        self,
        store: JobStore,
        engine: SynthesisEngine | None,
        worker_id: str | None = None,
        max_jobs: int = MAX_JOBS_PER_CYCLE,
    ):
        self.store = store
        self.engine = engine
        self.worker_id = worker_id or default_worker_id()
        self.max_jobs = max_jobs

        self._batch_lock = threading.Lock()
        self._started = time.monotonic()
        self.total_processed = 0
        self.total_failed = 0
        self.last_poll_at = None

    def process_batch(self) -> BatchReport:
        """Claim and process up to max_jobs jobs.

        Job and database failures are reported, never raised. Only a worker
        built without an engine raises, before claiming anything.
        """
        if self.engine is None:
            raise ConfigError(f"Worker {self.worker_id} has no synthesis engine")
        if not self._batch_lock.acquire(blocking=False):
            logger.info("Worker %s: batch already running, skipping", self.worker_id)
            return BatchReport(skipped=True)

        report = BatchReport()
        try:
            self.last_poll_at = utcnow()
            for _ in range(self.max_jobs):
                try:
                    job = self.store.claim_next_job(self.worker_id)
                except SQLAlchemyError:
                    logger.exception("Worker %s: claim failed, ending batch", self.worker_id)
                    break
                if job is None:
                    break
                report.claimed += 1
                report.record(self._process_safely(job))
        finally:
            self._batch_lock.release()

        self.total_processed += report.claimed
        self.total_failed += report.failed
        logger.info(
            "Worker %s batch: claimed=%d completed=%d failed=%d superseded=%d",
            self.worker_id, report.claimed, report.completed, report.failed, report.superseded,
        )
        return report

    def _process_safely(self, job: RenderJob) -> JobOutcome:
        start = time.monotonic()
        try:
            return self.process_job(job)
        except Exception as e:
            # The outcome write itself failed; the job stays processing until it goes stale
            logger.exception("Job %s: could not record outcome", job.id)
            return JobOutcome(
                job_id=job.id,
                status="failed",
                elapsed_seconds=time.monotonic() - start,
                error=describe_failure(e),
                error_kind=InternalError.kind,
            )

    def process_job(self, job: RenderJob) -> JobOutcome:
        """Render one claimed job and record completion or failure."""
        start = time.monotonic()
        generation = job.claim_generation

        def progress(percent: int, stage: str) -> None:
            try:
                self.store.update_progress(job.id, percent, stage, claim_generation=generation)
            except SQLAlchemyError as e:
                logger.warning("Job %s: progress update failed: %s", job.id, e)

        try:
            result = self.engine.render(job, progress)
        except Exception as e:
            kind = e.kind if isinstance(e, RenderError) else InternalError.kind
            message = describe_failure(e)
            elapsed = time.monotonic() - start
            logger.exception("Job %s failed after %.1fs (%s)", job.id, elapsed, kind)
            recorded = self.store.fail_job(job.id, message, claim_generation=generation)
            status = "failed" if recorded else "superseded"
            if not recorded:
                logger.warning("Job %s was reclaimed; failure not recorded", job.id)
            return JobOutcome(job.id, status, elapsed, error=message, error_kind=kind)

        elapsed = time.monotonic() - start
        if self.store.complete_job(job.id, result.to_dict(), claim_generation=generation):
            logger.info("Job %s completed in %.1fs", job.id, elapsed)
            return JobOutcome(job.id, "completed", elapsed)

        logger.warning("Job %s was reclaimed; result from generation %d discarded", job.id, generation)
        return JobOutcome(job.id, "superseded", elapsed)

    def health(self) -> dict:
        try:
            queue = self.store.count_by_status()
            status = "healthy"
        except SQLAlchemyError as e:
            logger.error("Health check: database unreachable: %s", e)
            queue = None
            status = "degraded"

        return {
            "status": status,
            "worker_id": self.worker_id,
            "uptime_seconds": round(time.monotonic() - self._started, 1),
            "total_processed": self.total_processed,
            "total_failed": self.total_failed,
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
            "queue": queue,
        }


def run_forever(
    worker: RenderWorker,
    interval_seconds: float,
    stop: threading.Event | None = None,
) -> None:
    """Run a batch now, then one every interval_seconds until stopped."""
    stop = stop or threading.Event()
    logger.info("Worker %s polling every %ss", worker.worker_id, interval_seconds)
    try:
        while not stop.is_set():
            worker.process_batch()
            stop.wait(interval_seconds)
    except KeyboardInterrupt:
        logger.info("Worker %s interrupted, shutting down", worker.worker_id)

"""Database-backed job queue with unique jobs, priorities and retry backoff"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from ledger_bank_api.config import settings
from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.domain.models import JobState
from ledger_bank_api.infrastructure.database.models import Job
from ledger_bank_api.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

PENDING_STATES = (JobState.AVAILABLE.value, JobState.RETRYABLE.value, JobState.EXECUTING.value)
FINISHED_STATES = (JobState.COMPLETED.value, JobState.DISCARDED.value, JobState.CANCELLED.value)
MAX_PRIORITY = 9


def backoff_seconds(attempt: int, base: float | None = None) -> float:
    """Exponential backoff: base, 2*base, 4*base..."""
    base = settings.job_backoff_base if base is None else base
    return base * (2 ** (attempt - 1))


class JobQueue:
    """Enqueue, claim and settle background jobs"""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(
        self,
        worker: str,
        args: Dict[str, Any],
        queue: str = "default",
        priority: int = 0,
        delay_seconds: float = 0,
        max_attempts: Optional[int] = None,
        unique: bool = True,
    ) -> Job:
        """
        Insert a job, or return the pending one with the same worker and args.

        Priority 0 runs first. ``delay_seconds`` schedules the job in the future.
        """
        if not 0 <= priority <= MAX_PRIORITY:
            raise DomainException("validation_error", f"priority must be between 0 and {MAX_PRIORITY}")
        if unique:
            existing = self._find_pending(worker, args)
            if existing is not None:
                return existing

        job = Job(
            queue=queue,
            worker=worker,
            args=args,
            priority=priority,
            max_attempts=max_attempts or settings.job_max_attempts,
            scheduled_at=utcnow() + timedelta(seconds=delay_seconds),
            state=JobState.AVAILABLE.value,
            errors=[],
        )
        self.db.add(job)
        self.db.commit()
        logger.info("Job enqueued", extra={"job_id": job.id, "worker": worker, "queue": queue})
        return job

    def _find_pending(self, worker: str, args: Dict[str, Any]) -> Optional[Job]:
        candidates = (
            self.db.query(Job)
            .filter(Job.worker == worker, Job.state.in_(PENDING_STATES))
            .all()
        )
        for job in candidates:
            if job.args == args:
                return job
        return None

    def claim(self, queues: Sequence[str], limit: int = 10, now: Optional[datetime] = None) -> List[Job]:
        """Lock due jobs and mark them executing"""
        now = now or utcnow()
        jobs = (
            self.db.query(Job)
            .filter(
                Job.queue.in_(list(queues)),
                Job.state.in_([JobState.AVAILABLE.value, JobState.RETRYABLE.value]),
                Job.scheduled_at <= now,
            )
            .order_by(Job.priority.asc(), Job.scheduled_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .all()
        )
        for job in jobs:
            job.state = JobState.EXECUTING.value
            job.attempt += 1
            job.attempted_at = now
        self.db.commit()
        return jobs

    def complete(self, job: Job) -> Job:
        job.state = JobState.COMPLETED.value
        job.completed_at = utcnow()
        self.db.commit()
        return job

    def fail(self, job: Job, error: Exception, retry: bool = True) -> Job:
        """
        Record a failed attempt.

        Retryable domain errors are rescheduled with exponential backoff while
        attempts remain. The error category caps the attempts and sets the base
        delay; the job's own ``max_attempts`` caps them further. Everything
        else, or any error when ``retry`` is False, is discarded.
        """
        now = utcnow()
        job.errors = list(job.errors or []) + [
            {"attempt": job.attempt, "at": now.isoformat(), "error": f"{type(error).__name__}: {error}"}
        ]
        retryable = retry and isinstance(error, DomainException) and error.retryable
        if retryable and job.attempt < min(job.max_attempts, error.max_retries):
            base = error.retry_delay_ms / 1000 * settings.job_backoff_base
            job.state = JobState.RETRYABLE.value
            job.scheduled_at = now + timedelta(seconds=backoff_seconds(job.attempt, base))
        else:
            job.state = JobState.DISCARDED.value
            job.discarded_at = now
        self.db.commit()
        return job

    def rescue_orphaned(self, after_seconds: Optional[int] = None) -> int:
        """
        Recover jobs left ``executing`` by a runner that died.

        Jobs with attempts left become ``retryable`` again, the rest are
        discarded.
        """
        after_seconds = settings.job_rescue_after_seconds if after_seconds is None else after_seconds
        now = utcnow()
        orphans = (
            self.db.query(Job)
            .filter(
                Job.state == JobState.EXECUTING.value,
                Job.attempted_at < now - timedelta(seconds=after_seconds),
            )
            .with_for_update(skip_locked=True)
            .all()
        )
        for job in orphans:
            job.errors = list(job.errors or []) + [
                {"attempt": job.attempt, "at": now.isoformat(), "error": "orphaned: runner stopped mid-job"}
            ]
            if job.attempt < job.max_attempts:
                job.state = JobState.RETRYABLE.value
                job.scheduled_at = now
            else:
                job.state = JobState.DISCARDED.value
                job.discarded_at = now
        self.db.commit()
        if orphans:
            logger.warning("Orphaned jobs rescued", extra={"count": len(orphans)})
        return len(orphans)

    def prune(self, max_age_seconds: Optional[int] = None) -> int:
        """Delete finished jobs (completed, discarded, cancelled) older than ``max_age_seconds``"""
        max_age_seconds = settings.job_prune_max_age_seconds if max_age_seconds is None else max_age_seconds
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        finished_at = func.coalesce(Job.completed_at, Job.discarded_at, Job.inserted_at)
        count = (
            self.db.query(Job)
            .filter(Job.state.in_(FINISHED_STATES), finished_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if count:
            logger.info("Finished jobs pruned", extra={"count": count})
        return count

    def cancel(self, job: Job) -> Job:
        job.state = JobState.CANCELLED.value
        self.db.commit()
        return job

    def get(self, job_id: str) -> Optional[Job]:
        return self.db.get(Job, job_id)

    def counts(self) -> Dict[str, int]:
        """Number of jobs per state"""
        rows = self.db.query(Job.state, func.count(Job.id)).group_by(Job.state).all()
        return {state: count for state, count in rows}

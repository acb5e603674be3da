"""Background job runner.

Polls the job table, dispatches claimed jobs to their worker and settles them.
Each tick first rescues jobs orphaned by a crashed runner and prunes old
finished jobs. It then schedules due bank syncs and purges expired refresh
tokens. Run with ``python -m ledger_bank_api.workers.runner``.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence

from ledger_bank_api.config import settings
from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.domain.models import JobState
from ledger_bank_api.infrastructure.cache import build_cache
from ledger_bank_api.infrastructure.database.models import Job
from ledger_bank_api.infrastructure.database.session import SessionLocal
from ledger_bank_api.infrastructure.observability.logging import log_job, setup_logging
from ledger_bank_api.infrastructure.observability.metrics import record_job
from ledger_bank_api.services.sync import BankSyncService
from ledger_bank_api.services.users import UserService
from ledger_bank_api.workers.bank_sync_worker import BankSyncWorker
from ledger_bank_api.workers.payment_worker import PaymentWorker
from ledger_bank_api.workers.queue import JobQueue

logger = logging.getLogger(__name__)


class WorkerRunner:
    """Runs jobs for a set of workers"""

    def __init__(self, session_factory=SessionLocal, cache=None, workers: Optional[Sequence] = None):
        self.session_factory = session_factory
        self.cache = cache
        workers = workers or [PaymentWorker(session_factory, cache), BankSyncWorker(session_factory, cache)]
        self.workers: Dict[str, object] = {worker.name: worker for worker in workers}
        self.queues: List[str] = sorted({worker.queue for worker in workers})
        self._stopped = False

    async def run_once(self, limit: Optional[int] = None) -> int:
        """Claim and execute due jobs, returning how many ran"""
        db = self.session_factory()
        try:
            queue = JobQueue(db)
            jobs = queue.claim(self.queues, limit or settings.worker_batch_size)
            for job in jobs:
                await self._execute(queue, job)
            return len(jobs)
        finally:
            db.close()

    async def _execute(self, queue: JobQueue, job: Job) -> None:
        start_time = time.time()
        worker = self.workers.get(job.worker)
        try:
            if worker is None:
                raise DomainException("configuration_error", f"No worker registered for {job.worker}")
            await worker.perform(job.args)
        except DomainException as e:
            self._settle_failure(queue, job, worker, e, start_time)
            return
        except Exception as e:
            logger.exception("Unexpected job error", extra={"job_id": job.id, "worker": job.worker})
            error = DomainException("internal_server_error", str(e))
            self._settle_failure(queue, job, worker, error, start_time)
            return

        queue.complete(job)
        record_job(job.worker, "completed")
        log_job(job.id, job.worker, job.attempt, "completed", (time.time() - start_time) * 1000)

    def _settle_failure(self, queue: JobQueue, job: Job, worker, error: DomainException, start_time: float) -> None:
        # A job without a registered worker cannot succeed on a later attempt
        queue.fail(job, error, retry=worker is not None)
        outcome = "retried" if job.state == JobState.RETRYABLE.value else "discarded"
        record_job(job.worker, outcome)
        log_job(
            job.id,
            job.worker,
            job.attempt,
            outcome,
            (time.time() - start_time) * 1000,
            error=f"{error.reason}: {error.message}",
            correlation_id=error.correlation_id,
        )
        if outcome == "discarded" and worker is not None:
            worker.on_discard(job, error)

    def schedule_due_syncs(self) -> int:
        db = self.session_factory()
        try:
            queue = JobQueue(db)
            logins = BankSyncService(db).due_logins()
            for login in logins:
                queue.enqueue(BankSyncWorker.name, {"login_id": login.id}, queue=BankSyncWorker.queue, priority=5)
            return len(logins)
        finally:
            db.close()

    def purge_expired_tokens(self) -> int:
        db = self.session_factory()
        try:
            return UserService(db).cleanup_expired_refresh_tokens()
        finally:
            db.close()

    def maintain_jobs(self) -> Dict[str, int]:
        """Rescue orphaned jobs and prune old finished ones"""
        db = self.session_factory()
        try:
            queue = JobQueue(db)
            return {"rescued": queue.rescue_orphaned(), "pruned": queue.prune()}
        finally:
            db.close()

    async def tick(self) -> int:
        self.maintain_jobs()
        self.schedule_due_syncs()
        self.purge_expired_tokens()
        if self.cache is not None:
            self.cache.cleanup()
        return await self.run_once()

    async def run_forever(self) -> None:
        logger.info("Worker runner started", extra={"queues": self.queues})
        while not self._stopped:
            try:
                ran = await self.tick()
            except Exception:
                logger.exception("Worker tick failed")
                ran = 0
            if not ran:
                await asyncio.sleep(settings.worker_poll_interval)

    def stop(self) -> None:
        self._stopped = True


def main() -> None:
    setup_logging(settings.log_level)
    runner = WorkerRunner(SessionLocal, build_cache(settings))
    asyncio.run(runner.run_forever())


if __name__ == "__main__":
    main()

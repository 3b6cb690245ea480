"""Background job hand-off.

Long-running operations commands are not run inside dispatch. The
handler enqueues a named job and returns its id at once; the caller
polls ``ops.jobstatus`` for the outcome.

Key classes:
    LocalJobQueue: In-process queue. Each job runs as an asyncio task,
        bounded by a semaphore, with exponential-backoff retries.
"""

import asyncio
import itertools
from collections import OrderedDict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog

from .exceptions import JobQueueError
from .models import Job, JobState

logger = structlog.get_logger("verabot.jobs")

JobWorker = Callable[[Job], Awaitable[Any]]

DEFAULT_MAX_PARALLEL = 2
DEFAULT_BACKOFF_SECONDS = 2.0
MAX_TRACKED_JOBS = 500

HEAVYWORK_STEPS = 4
HEAVYWORK_STEP_SECONDS = 0.5
DEPLOY_SECONDS = 1.5


async def heavywork_worker(job: Job) -> Dict[str, Any]:
    """Simulated long-running work that reports progress as it goes."""
    for step in range(1, HEAVYWORK_STEPS + 1):
        await asyncio.sleep(HEAVYWORK_STEP_SECONDS)
        job.progress = step * 100 // HEAVYWORK_STEPS
    logger.info("heavywork_done", job_id=job.id, task=job.payload.get("task"))
    return {"ok": True}


async def deploy_worker(job: Job) -> Dict[str, Any]:
    """Simulated deployment to ``payload["target"]``."""
    target = job.payload.get("target", "production")
    logger.info("deploy_started", job_id=job.id, target=target)
    await asyncio.sleep(DEPLOY_SECONDS)
    return {"ok": True, "target": target}


DEFAULT_WORKERS: Dict[str, JobWorker] = {
    "heavywork": heavywork_worker,
    "deploy": deploy_worker,
}


class LocalJobQueue:
    """Runs jobs as asyncio tasks in this process.

    Finished jobs stay queryable until more than ``max_tracked`` jobs
    exist; then the oldest finished ones are forgotten.

    Args:
        workers: Mapping of job name to async worker. A worker receives
            the live Job and may update ``job.progress``; its return
            value becomes ``job.return_value``.
        max_parallel: Jobs allowed to run at the same time.
        backoff_seconds: Delay before the first retry, doubled each time.
        max_tracked: Upper bound on remembered jobs.
    """

    def __init__(
        self,
        workers: Optional[Mapping[str, JobWorker]] = None,
        *,
        max_parallel: int = DEFAULT_MAX_PARALLEL,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        max_tracked: int = MAX_TRACKED_JOBS,
    ):
        if max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        self.workers: Dict[str, JobWorker] = dict(
            DEFAULT_WORKERS if workers is None else workers
        )
        self.max_parallel = max_parallel
        self.backoff_seconds = backoff_seconds
        self.max_tracked = max_tracked

        self._ids = itertools.count(1)
        self._jobs: "OrderedDict[str, Job]" = OrderedDict()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None

    def register(self, name: str, worker: JobWorker) -> None:
        self.workers[name] = worker

    async def enqueue(self, name: str, payload: Optional[Mapping[str, Any]] = None,
                      *, attempts: int = 1) -> Job:
        """Hand off a job and return it in the ``waiting`` state.

        Raises:
            JobQueueError: If no worker is registered under ``name``.
        """
        if name not in self.workers:
            raise JobQueueError(f"No worker registered for job '{name}'", job=name)
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_parallel)

        job = Job(
            id=str(next(self._ids)),
            name=name,
            payload=dict(payload or {}),
            max_attempts=max(1, attempts),
        )
        self._jobs[job.id] = job
        self._forget_finished()
        self._tasks[job.id] = asyncio.create_task(self._run(job))
        logger.info("job_enqueued", job_id=job.id, job=name, attempts=job.max_attempts)
        return job

    async def get_job(self, job_id: Any) -> Optional[Job]:
        return self._jobs.get(str(job_id))

    def stats(self) -> Dict[str, int]:
        """Number of tracked jobs per state."""
        counts = {state.value: 0 for state in JobState}
        for job in self._jobs.values():
            counts[job.state.value] += 1
        return counts

    async def close(self) -> None:
        """Cancel unfinished jobs and wait for their tasks to end."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("job_queue_closed", cancelled=len(tasks))

    async def _run(self, job: Job) -> None:
        worker = self.workers[job.name]
        try:
            async with self._semaphore:
                while True:
                    job.attempts_made += 1
                    job.state = JobState.ACTIVE
                    try:
                        value = await worker(job)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        job.error = str(e)
                        if job.attempts_made >= job.max_attempts:
                            job.state = JobState.FAILED
                            job.finished_at = datetime.now()
                            logger.error("job_failed", job_id=job.id, job=job.name,
                                         attempts=job.attempts_made, error=str(e))
                            return
                        delay = self.backoff_seconds * 2 ** (job.attempts_made - 1)
                        job.state = JobState.WAITING
                        logger.warning("job_retrying", job_id=job.id, job=job.name,
                                       attempt=job.attempts_made, delay=delay, error=str(e))
                        await asyncio.sleep(delay)
                        continue

                    job.state = JobState.COMPLETED
                    job.progress = 100
                    job.return_value = value
                    job.error = None
                    job.finished_at = datetime.now()
                    logger.info("job_completed", job_id=job.id, job=job.name)
                    return
        finally:
            self._tasks.pop(job.id, None)

    def _forget_finished(self) -> None:
        excess = len(self._jobs) - self.max_tracked
        if excess <= 0:
            return
        for job_id in [j.id for j in self._jobs.values() if j.is_finished][:excess]:
            del self._jobs[job_id]

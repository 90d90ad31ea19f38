"""In-process cron scheduler for the engine's recurring jobs."""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional
from uuid import uuid4

import structlog
from croniter import croniter

logger = structlog.get_logger(__name__)

JobFunc = Callable[[], Awaitable[object]]


@dataclass
class _Job:
    name: str
    cron: str
    func: JobFunc
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    task: Optional[asyncio.Task] = None
    next_fire: Optional[datetime] = None


class JobScheduler:
    """Owns named recurring jobs, each an asyncio task sleeping until its next cron fire.

    A job never overlaps itself: a fire that arrives while the previous run is
    still in progress is skipped.
    """

    def __init__(self, clock):
        self._clock = clock
        self._jobs: dict[str, _Job] = {}
        self._runs: set[asyncio.Task] = set()
        self._running = False

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    @property
    def running(self) -> bool:
        return self._running

    def add_job(self, name: str, cron: str, func: JobFunc) -> None:
        """Register a job.

        Raises:
            ValueError: If the name is taken or the cron expression is invalid
        """
        if name in self._jobs:
            raise ValueError(f"job {name} already registered")
        if not croniter.is_valid(cron):
            raise ValueError(f"invalid cron expression for {name}: {cron}")

        job = _Job(name=name, cron=cron, func=func)
        self._jobs[name] = job
        if self._running:
            job.task = asyncio.create_task(self._loop(job))

    def start(self) -> None:
        """Start every registered job loop."""
        self._running = True
        for job in self._jobs.values():
            if job.task is None or job.task.done():
                job.task = asyncio.create_task(self._loop(job))
        logger.info("job_scheduler_started", jobs=self.job_names)

    async def stop(self) -> None:
        """Cancel every job loop and wait for them to end."""
        self._running = False
        tasks = [job.task for job in self._jobs.values() if job.task is not None]
        tasks.extend(self._runs)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for job in self._jobs.values():
            job.task = None
            job.next_fire = None
        logger.info("job_scheduler_stopped")

    async def cancel(self, name: str) -> bool:
        """Unregister a job, stopping its loop. Returns False for unknown names."""
        job = self._jobs.pop(name, None)
        if job is None:
            return False
        if job.task is not None:
            job.task.cancel()
            try:
                await job.task
            except asyncio.CancelledError:
                pass
        logger.info("job_cancelled", job=name)
        return True

    async def run_now(self, name: str) -> tuple[bool, object]:
        """Run a job immediately.

        Returns:
            (ran, result); ``ran`` is False when a run was already in progress

        Raises:
            KeyError: If no job has this name
        """
        job = self._jobs[name]
        return await self._run_once(job, raise_errors=True)

    def next_fire_time(self, name: str) -> datetime:
        job = self._jobs[name]
        if job.next_fire is not None:
            return job.next_fire
        return croniter(job.cron, self._clock()).get_next(datetime)

    async def _loop(self, job: _Job) -> None:
        """Fire ``job`` on each cron slot, advancing from the previous slot.

        A clock that reads slightly behind after waking cannot produce the
        same slot twice. Slots missed entirely collapse into the next one.
        """
        schedule = croniter(job.cron, self._clock())
        while self._running:
            next_fire = schedule.get_next(datetime)
            now = self._clock()
            if next_fire < now:
                logger.warning("job_slots_missed", job=job.name, missed_from=next_fire.isoformat())
                schedule = croniter(job.cron, now)
                next_fire = schedule.get_next(datetime)
            job.next_fire = next_fire
            try:
                await asyncio.sleep(max((next_fire - now).total_seconds(), 0))
            except asyncio.CancelledError:
                break
            # A long run must not delay the next fire check.
            run = asyncio.create_task(self._run_once(job, raise_errors=False))
            self._runs.add(run)
            run.add_done_callback(self._runs.discard)

    async def _run_once(self, job: _Job, raise_errors: bool) -> tuple[bool, object]:
        if job.lock.locked():
            logger.warning("job_run_skipped_overlap", job=job.name)
            return False, None

        async with job.lock:
            with structlog.contextvars.bound_contextvars(job_run_id=str(uuid4())):
                return await self._invoke(job, raise_errors)

    async def _invoke(self, job: _Job, raise_errors: bool) -> tuple[bool, object]:
        start_time = time.perf_counter()
        logger.info("job_run_started", job=job.name)
        try:
            result = await job.func()
        except Exception as e:
            logger.error(
                "job_run_failed",
                job=job.name,
                duration_ms=int((time.perf_counter() - start_time) * 1000),
                error=str(e),
            )
            if raise_errors:
                raise
            return True, None

        logger.info(
            "job_run_complete",
            job=job.name,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return True, result

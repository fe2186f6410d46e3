"""
Schedules purges of cache directories as durable background jobs.

Jobs live in a `JobStore` so they survive restarts. A polling loop claims due
jobs, runs a `PurgeWorker` for each off the event loop and writes back the
outcome: periodic jobs are rescheduled (with exponential backoff after a
failure), one-time jobs end as succeeded or failed.

A claim is leased to one scheduler and renewed while its purge runs. Only
claims whose lease ran out are returned to the queue, so several schedulers can
share one database.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from contextlib import suppress
from datetime import timedelta
from pathlib import Path

from imgcache.exceptions import ConfigurationError, InvalidIntervalError, PurgeError
from imgcache.models.job import MIN_PERIODIC_INTERVAL, JobKind, JobRecord, JobState
from imgcache.storage.job_store import JobStore
from imgcache.utils.formatting import to_seconds
from imgcache.utils.structured_logger import JobLogger, create_job_logger

from .purge_worker import PurgeResult, PurgeWorker

log = logging.getLogger(__name__)

MIN_BACKOFF = timedelta(seconds=10)
MAX_BACKOFF = timedelta(hours=5)
JOB_LEASE = timedelta(minutes=10)
PERIODIC_KEY_PREFIX = "periodic-cleanup:"


def backoff_delay(attempts: int) -> float:
    """Seconds to wait before retrying after the given number of failed attempts."""
    if attempts < 1:
        return 0.0
    delay = MIN_BACKOFF.total_seconds() * (2 ** (attempts - 1))
    return min(delay, MAX_BACKOFF.total_seconds())


class CleanupScheduler:
    """Registers periodic and one-time purges and executes them when due."""

    def __init__(
        self,
        store: JobStore,
        poll_seconds: float = 30.0,
        job_logger: JobLogger | None = None,
        clock: Callable[[], float] = time.time,
        lease: timedelta | float = JOB_LEASE,
    ):
        """
        Args:
            store: The persistent job table.
            poll_seconds: How often the background loop looks for due jobs.
            job_logger: Structured logger for job events.
            clock: Source of the current UNIX time.
            lease: How long a claim stays valid without renewal. Running jobs
                renew it every third of this period.
        """
        self.store = store
        self.poll_seconds = poll_seconds
        self.job_logger = job_logger or create_job_logger()[1]
        self.worker_id = uuid.uuid4().hex
        self.lease_seconds = to_seconds(lease)
        self._clock = clock
        self._loop_task: asyncio.Task | None = None
        self._wakeup: asyncio.Event | None = None

    @staticmethod
    def unique_key(directory: Path) -> str:
        """The idempotency key of a directory's periodic job."""
        return PERIODIC_KEY_PREFIX + str(Path(directory).resolve())

    @staticmethod
    def _payload_for(directory: Path) -> str:
        try:
            return PurgeWorker.create_payload(directory)
        except PurgeError as e:
            raise ConfigurationError(str(e)) from e

    async def register_periodic(
        self, interval: timedelta | float, directory: Path
    ) -> int:
        """
        Registers the recurring purge of a directory. Registering again for the
        same directory keeps the existing job.

        Returns:
            The id of the periodic job for the directory.

        Raises:
            InvalidIntervalError: If the interval is below MIN_PERIODIC_INTERVAL.
            ConfigurationError: If the directory is unusable.
        """
        interval_s = to_seconds(interval)
        if interval_s < MIN_PERIODIC_INTERVAL.total_seconds():
            raise InvalidIntervalError(
                "Cleanup interval cannot be smaller than "
                f"{int(MIN_PERIODIC_INTERVAL.total_seconds() // 60)} minutes."
            )

        payload = self._payload_for(directory)
        key = self.unique_key(directory)
        next_due = self._clock() + interval_s
        job_id, created = await self.store.insert(
            JobKind.PERIODIC,
            payload,
            next_due,
            unique_key=key,
            interval_seconds=interval_s,
        )
        if created:
            self.job_logger.job_enqueued(
                job_id, JobKind.PERIODIC.value, str(directory), next_due
            )
        else:
            self.job_logger.job_kept(job_id, str(directory))
        return job_id

    async def trigger_once(self, directory: Path) -> int:
        """
        Enqueues an immediate one-time purge, independently of any periodic job.

        Returns:
            The id of the new job.
        """
        payload = self._payload_for(directory)
        next_due = self._clock()
        job_id, _ = await self.store.insert(JobKind.ONE_TIME, payload, next_due)
        self.job_logger.job_enqueued(
            job_id, JobKind.ONE_TIME.value, str(directory), next_due
        )
        if self._wakeup is not None:
            self._wakeup.set()
        return job_id

    async def get_job(self, job_id: int) -> JobRecord | None:
        return await self.store.get(job_id)

    async def find_periodic(self, directory: Path) -> JobRecord | None:
        """Returns the periodic job registered for a directory, if any."""
        return await self.store.find_by_key(self.unique_key(directory))

    async def list_jobs(self, directory: Path | None = None) -> list[JobRecord]:
        """Lists jobs, optionally only those targeting one directory."""
        jobs = await self.store.list_all()
        if directory is None:
            return jobs
        target = str(Path(directory).resolve())
        return [job for job in jobs if job.directory == target]

    async def requeue_expired(self) -> int:
        """Returns jobs whose claim lapsed, e.g. after a crash, to the queue."""
        requeued = await self.store.requeue_expired(self._clock())
        if requeued:
            log.info(f"Requeued {requeued} interrupted cleanup job(s).")
        return requeued

    async def run_pending(self) -> list[tuple[JobRecord, PurgeResult]]:
        """
        Claims and runs every job that is due now.

        Returns:
            The claimed jobs (as they were before running) with their results.
        """
        await self.requeue_expired()
        now = self._clock()
        outcomes = []
        for job in await self.store.due(now):
            if not await self.store.claim(job, now, self.worker_id, self.lease_seconds):
                log.debug(f"Job {job.job_id} was claimed elsewhere, skipping.")
                continue
            result = await self._execute(job)
            outcomes.append((job, result))
        return outcomes

    async def _purge_with_lease(self, job: JobRecord) -> PurgeResult:
        """Runs the purge off the loop, renewing the claim while it is busy."""
        purge = asyncio.ensure_future(asyncio.to_thread(PurgeWorker(job.payload).run))
        try:
            while True:
                done, _ = await asyncio.wait({purge}, timeout=self.lease_seconds / 3)
                if done:
                    return purge.result()
                renewed = await self.store.renew(
                    job.job_id, self.worker_id, self._clock() + self.lease_seconds
                )
                if not renewed:
                    log.warning(f"Lost the claim on job {job.job_id} while running.")
        finally:
            if not purge.done():
                purge.cancel()

    async def _finish(self, job: JobRecord, state: JobState, next_due: float, **kw):
        if not await self.store.finish(
            job.job_id, self.worker_id, state, next_due, **kw
        ):
            log.warning(
                f"Outcome of job {job.job_id} not recorded: the claim is no longer"
                " held by this scheduler."
            )

    async def _execute(self, job: JobRecord) -> PurgeResult:
        attempt = job.attempts + 1
        self.job_logger.job_started(job.job_id, job.kind.value, attempt)
        started = time.monotonic()

        result = await self._purge_with_lease(job)
        duration = time.monotonic() - started
        now = self._clock()

        if result.success:
            self.job_logger.job_succeeded(job.job_id, result.removed, duration)
            if job.kind is JobKind.PERIODIC:
                await self._finish(
                    job,
                    JobState.ENQUEUED,
                    now + (job.interval_seconds or 0.0),
                    attempts=0,
                )
            else:
                await self._finish(
                    job, JobState.SUCCEEDED, job.next_due, attempts=attempt
                )
            return result

        terminal = job.kind is JobKind.ONE_TIME
        self.job_logger.job_failed(job.job_id, result.error, attempt, terminal)
        if terminal:
            await self._finish(
                job,
                JobState.FAILED,
                job.next_due,
                attempts=attempt,
                last_error=result.error,
            )
        else:
            delay = backoff_delay(attempt)
            self.job_logger.job_rescheduled(job.job_id, delay)
            await self._finish(
                job,
                JobState.ENQUEUED,
                now + delay,
                attempts=attempt,
                last_error=result.error,
            )
        return result

    async def start(self) -> None:
        """Starts the background loop that runs due jobs."""
        if self._loop_task is None or self._loop_task.done():
            await self.requeue_expired()
            self._wakeup = asyncio.Event()
            self._loop_task = asyncio.create_task(self._run_loop())
            log.debug("Started cleanup scheduler loop.")

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.run_pending()
                await self._wait_for_tick()
            except asyncio.CancelledError:
                log.debug("Cleanup scheduler loop cancelled.")
                break
            except Exception as e:
                log.warning(f"Error in cleanup scheduler loop: {e}")
                await asyncio.sleep(self.poll_seconds)

    async def _wait_for_tick(self) -> None:
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_seconds)
        self._wakeup.clear()

    async def stop(self) -> None:
        """Stops the background loop gracefully."""
        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._loop_task
            log.debug("Stopped cleanup scheduler loop.")
        self._loop_task = None
        self._wakeup = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

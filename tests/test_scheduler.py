"""
Tests for CleanupScheduler and the JobStore it persists jobs in.
"""

import asyncio
import os
import threading
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from imgcache.exceptions import ConfigurationError, InvalidIntervalError
from imgcache.jobs.purge_worker import PurgeResult
from imgcache.jobs.scheduler import (
    MAX_BACKOFF,
    MIN_BACKOFF,
    CleanupScheduler,
    backoff_delay,
)
from imgcache.models.job import JobKind, JobState
from imgcache.storage.job_store import JobStore

INTERVAL = timedelta(minutes=15)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return JobStore(tmp_path / "jobs.sqlite")


@pytest.fixture
def scheduler(store, clock):
    return CleanupScheduler(store, poll_seconds=0.05, clock=clock)


def _fill(directory, count=3):
    for i in range(count):
        (directory / f"f{i}").write_bytes(b"data")


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_twice_keeps_one_job(self, scheduler, cache_dir):
        first = await scheduler.register_periodic(INTERVAL, cache_dir)
        second = await scheduler.register_periodic(timedelta(hours=2), cache_dir)

        jobs = await scheduler.list_jobs()
        assert first == second
        assert len(jobs) == 1
        assert jobs[0].kind is JobKind.PERIODIC
        assert jobs[0].interval_seconds == INTERVAL.total_seconds()

    @pytest.mark.asyncio
    async def test_same_directory_spelled_differently_collapses(
        self, scheduler, cache_dir
    ):
        await scheduler.register_periodic(INTERVAL, cache_dir)
        await scheduler.register_periodic(INTERVAL, cache_dir / ".." / cache_dir.name)

        assert len(await scheduler.list_jobs()) == 1

    @pytest.mark.asyncio
    async def test_different_directories_do_not_collide(self, scheduler, tmp_path):
        first, second = tmp_path / "a" / "images", tmp_path / "b" / "images"
        first.mkdir(parents=True)
        second.mkdir(parents=True)

        await scheduler.register_periodic(INTERVAL, first)
        await scheduler.register_periodic(INTERVAL, second)

        assert len(await scheduler.list_jobs()) == 2
        assert len(await scheduler.list_jobs(first)) == 1

    @pytest.mark.asyncio
    async def test_short_interval_is_rejected_without_enqueueing(
        self, scheduler, cache_dir
    ):
        with pytest.raises(InvalidIntervalError):
            await scheduler.register_periodic(timedelta(minutes=14), cache_dir)

        assert await scheduler.list_jobs() == []

    @pytest.mark.asyncio
    async def test_short_interval_fails_even_when_already_registered(
        self, scheduler, cache_dir
    ):
        await scheduler.register_periodic(INTERVAL, cache_dir)
        with pytest.raises(ConfigurationError):
            await scheduler.register_periodic(60, cache_dir)

    @pytest.mark.asyncio
    async def test_invalid_directory_is_a_configuration_error(
        self, scheduler, tmp_path
    ):
        with pytest.raises(ConfigurationError):
            await scheduler.register_periodic(INTERVAL, tmp_path / "missing")
        with pytest.raises(ConfigurationError):
            await scheduler.trigger_once(tmp_path / "missing")

    @pytest.mark.asyncio
    async def test_trigger_once_always_enqueues(self, scheduler, cache_dir):
        await scheduler.register_periodic(INTERVAL, cache_dir)
        first = await scheduler.trigger_once(cache_dir)
        second = await scheduler.trigger_once(cache_dir)

        jobs = await scheduler.list_jobs(cache_dir)
        assert first != second
        assert [job.kind for job in jobs] == [
            JobKind.PERIODIC,
            JobKind.ONE_TIME,
            JobKind.ONE_TIME,
        ]

    @pytest.mark.asyncio
    async def test_jobs_survive_a_new_store_instance(
        self, scheduler, cache_dir, tmp_path, clock
    ):
        job_id = await scheduler.register_periodic(INTERVAL, cache_dir)

        reopened = CleanupScheduler(JobStore(tmp_path / "jobs.sqlite"), clock=clock)
        assert await reopened.register_periodic(INTERVAL, cache_dir) == job_id
        assert (await reopened.find_periodic(cache_dir)).job_id == job_id


class TestExecution:
    @pytest.mark.asyncio
    async def test_one_time_job_purges_and_succeeds(self, scheduler, cache_dir):
        _fill(cache_dir)
        job_id = await scheduler.trigger_once(cache_dir)

        outcomes = await scheduler.run_pending()

        assert [job.job_id for job, _ in outcomes] == [job_id]
        assert outcomes[0][1].success
        assert os.listdir(cache_dir) == []
        assert (await scheduler.get_job(job_id)).state is JobState.SUCCEEDED
        assert await scheduler.run_pending() == []

    @pytest.mark.asyncio
    async def test_periodic_job_runs_when_due_and_reschedules(
        self, scheduler, cache_dir, clock
    ):
        _fill(cache_dir)
        job_id = await scheduler.register_periodic(INTERVAL, cache_dir)

        assert await scheduler.run_pending() == []
        assert len(os.listdir(cache_dir)) == 3

        clock.advance(INTERVAL.total_seconds())
        outcomes = await scheduler.run_pending()

        assert len(outcomes) == 1
        assert os.listdir(cache_dir) == []
        job = await scheduler.get_job(job_id)
        assert job.state is JobState.ENQUEUED
        assert job.next_due == clock.now + INTERVAL.total_seconds()
        assert job.attempts == 0

    @pytest.mark.asyncio
    async def test_failed_periodic_job_backs_off_exponentially(
        self, scheduler, cache_dir, clock, monkeypatch
    ):
        monkeypatch.setattr(
            "imgcache.jobs.scheduler.PurgeWorker.run",
            lambda self: PurgeResult(success=False, error="disk on fire"),
        )
        job_id = await scheduler.register_periodic(INTERVAL, cache_dir)
        clock.advance(INTERVAL.total_seconds())

        await scheduler.run_pending()
        job = await scheduler.get_job(job_id)
        assert job.state is JobState.ENQUEUED
        assert job.attempts == 1
        assert job.last_error == "disk on fire"
        assert job.next_due == clock.now + MIN_BACKOFF.total_seconds()

        clock.advance(MIN_BACKOFF.total_seconds())
        await scheduler.run_pending()
        job = await scheduler.get_job(job_id)
        assert job.attempts == 2
        assert job.next_due == clock.now + 2 * MIN_BACKOFF.total_seconds()

    @pytest.mark.asyncio
    async def test_failed_one_time_job_is_terminal(self, scheduler, cache_dir):
        job_id = await scheduler.trigger_once(cache_dir)
        os.rmdir(cache_dir)

        outcomes = await scheduler.run_pending()

        assert not outcomes[0][1].success
        job = await scheduler.get_job(job_id)
        assert job.state is JobState.FAILED
        assert "not a directory" in job.last_error
        assert await scheduler.run_pending() == []

    @pytest.mark.asyncio
    async def test_due_job_can_only_be_claimed_once(
        self, store, scheduler, cache_dir, clock
    ):
        await scheduler.trigger_once(cache_dir)
        (job,) = await store.due(clock.now)

        assert await store.claim(job, clock.now, "worker-a", 60) is True
        assert await store.claim(job, clock.now, "worker-b", 60) is False

    @pytest.mark.asyncio
    async def test_job_claimed_elsewhere_is_skipped(
        self, store, scheduler, cache_dir, monkeypatch
    ):
        _fill(cache_dir)
        await scheduler.trigger_once(cache_dir)
        monkeypatch.setattr(store, "claim", AsyncMock(return_value=False))

        assert await scheduler.run_pending() == []
        assert len(os.listdir(cache_dir)) == 3
        store.claim.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_requeues_jobs_with_expired_lease(
        self, store, scheduler, cache_dir, clock
    ):
        job_id = await scheduler.trigger_once(cache_dir)
        (job,) = await store.due(clock.now)
        await store.claim(job, clock.now, "crashed-worker", 60)
        assert (await store.get(job_id)).state is JobState.RUNNING
        clock.advance(61)

        await scheduler.start()
        try:
            for _ in range(100):
                if (await store.get(job_id)).state is JobState.SUCCEEDED:
                    break
                await asyncio.sleep(0.02)
        finally:
            await scheduler.stop()

        assert (await store.get(job_id)).state is JobState.SUCCEEDED


    @pytest.mark.asyncio
    async def test_live_claim_is_not_requeued(self, store, scheduler, cache_dir, clock):
        job_id = await scheduler.trigger_once(cache_dir)
        (job,) = await store.due(clock.now)
        await store.claim(job, clock.now, "other-worker", 60)

        assert await scheduler.requeue_expired() == 0
        assert await scheduler.run_pending() == []
        assert (await store.get(job_id)).claimed_by == "other-worker"

    @pytest.mark.asyncio
    async def test_only_the_claim_owner_can_finish(
        self, store, scheduler, cache_dir, clock
    ):
        job_id = await scheduler.trigger_once(cache_dir)
        (job,) = await store.due(clock.now)
        await store.claim(job, clock.now, "worker-a", 60)

        assert not await store.finish(job_id, "worker-b", JobState.FAILED, 0, 1)
        assert await store.finish(job_id, "worker-a", JobState.SUCCEEDED, 0, 1)

        finished = await store.get(job_id)
        assert finished.state is JobState.SUCCEEDED
        assert finished.claimed_by is None

    @pytest.mark.asyncio
    async def test_running_job_renews_its_lease(
        self, store, cache_dir, clock, monkeypatch
    ):
        release = threading.Event()
        monkeypatch.setattr(
            "imgcache.jobs.scheduler.PurgeWorker.run",
            lambda self: release.wait(5) and PurgeResult(success=True),
        )
        scheduler = CleanupScheduler(store, clock=clock, lease=0.15)
        job_id = await scheduler.trigger_once(cache_dir)

        running = asyncio.create_task(scheduler.run_pending())
        for _ in range(100):
            claimed = await store.get(job_id)
            if claimed.state is JobState.RUNNING:
                break
            await asyncio.sleep(0.01)
        clock.advance(10)
        await asyncio.sleep(0.2)
        renewed = await store.get(job_id)
        release.set()
        await running

        assert renewed.state is JobState.RUNNING
        assert renewed.lease_until > claimed.lease_until
        assert (await store.get(job_id)).state is JobState.SUCCEEDED


class TestSharedDatabase:
    @pytest.mark.asyncio
    async def test_starting_a_second_scheduler_does_not_rerun_a_running_job(
        self, tmp_path, cache_dir, monkeypatch
    ):
        runs = []
        release = threading.Event()

        def blocking_run(self):
            runs.append(self.payload)
            release.wait(5)
            return PurgeResult(success=True)

        monkeypatch.setattr("imgcache.jobs.scheduler.PurgeWorker.run", blocking_run)
        db_path = tmp_path / "jobs.sqlite"
        first = CleanupScheduler(JobStore(db_path), poll_seconds=0.02)
        second = CleanupScheduler(JobStore(db_path), poll_seconds=0.02)
        job_id = await first.trigger_once(cache_dir)

        running = asyncio.create_task(first.run_pending())
        for _ in range(100):
            if runs:
                break
            await asyncio.sleep(0.01)

        await second.start()
        try:
            await asyncio.sleep(0.2)
        finally:
            release.set()
            await running
            await second.stop()

        assert len(runs) == 1
        assert (await second.get_job(job_id)).state is JobState.SUCCEEDED



class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_trigger_once_is_picked_up_by_running_loop(self, store, cache_dir):
        scheduler = CleanupScheduler(store, poll_seconds=30)
        _fill(cache_dir)
        await scheduler.start()
        try:
            assert scheduler.running
            job_id = await scheduler.trigger_once(cache_dir)
            for _ in range(100):
                job = await scheduler.get_job(job_id)
                if job.is_terminal:
                    break
                await asyncio.sleep(0.02)
        finally:
            await scheduler.stop()

        assert job.state is JobState.SUCCEEDED
        assert os.listdir(cache_dir) == []
        assert not scheduler.running


class TestBackoff:
    def test_backoff_doubles_from_minimum(self):
        assert backoff_delay(1) == MIN_BACKOFF.total_seconds()
        assert backoff_delay(2) == 2 * MIN_BACKOFF.total_seconds()
        assert backoff_delay(4) == 8 * MIN_BACKOFF.total_seconds()

    def test_backoff_is_capped(self):
        assert backoff_delay(50) == MAX_BACKOFF.total_seconds()

    def test_no_backoff_without_failures(self):
        assert backoff_delay(0) == 0.0

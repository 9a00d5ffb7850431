"""Tracking of jobs submitted to asynchronous backends.

Every submitted job is persisted before submit() returns, so a restart
resumes polling for it. A poll cycle checks each pending job once:
completed jobs are fetched and announced exactly once, failed jobs are
logged and dropped, and jobs older than ``max_wait`` are abandoned.
Transient errors leave the job for the next cycle.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from transcription_engine.asr.interface import AsyncJobEngine
from transcription_engine.jobs.store import PendingJobStore
from transcription_engine.models import TranscriptionJob, TranscriptionResult
from transcription_engine.utils.deadline import race_deadline
from transcription_engine.utils.errors import (
    AsyncBackendFailedError,
    BackendUnavailableError,
    TranscriptionError,
    TranscriptionTimeoutError,
)

logger = logging.getLogger(__name__)

CompletedCallback = Callable[[TranscriptionResult, TranscriptionJob], Any]
FailedCallback = Callable[[TranscriptionJob, TranscriptionError], Any]
_Outcome = tuple[TranscriptionJob, TranscriptionResult | TranscriptionError]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AsyncJobTracker:
    """Persists, polls and resolves jobs for one asynchronous engine.

    Args:
        store: Persistence for pending jobs; loaded on construction.
        engine: Engine that owns the jobs. May be attached later.
        poll_interval: Seconds between poll cycles.
        max_wait: Seconds after submission before a job is abandoned.
        on_completed: Called with (result, job) once per completed job.
        on_failed: Called with (job, error) for failed or abandoned jobs.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store: PendingJobStore,
        engine: AsyncJobEngine | None = None,
        poll_interval: float = 30.0,
        max_wait: float = 3600.0,
        on_completed: CompletedCallback | None = None,
        on_failed: FailedCallback | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.engine = engine
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.on_completed = on_completed
        self.on_failed = on_failed
        self._clock = clock
        self._jobs: list[TranscriptionJob] = store.load()
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._waiters: dict[str, asyncio.Future[TranscriptionResult]] = {}

    @property
    def pending_jobs(self) -> list[TranscriptionJob]:
        return list(self._jobs)

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def attach(self, engine: AsyncJobEngine) -> None:
        if self.engine is not engine:
            logger.info("Job tracker attached to %s", engine.name)
        self.engine = engine

    async def submit(
        self, source_path: str, display_name: str | None = None
    ) -> TranscriptionJob:
        """Submit a recording to the attached engine and start tracking it.

        Raises:
            BackendUnavailableError: If no engine is attached.
        """
        if self.engine is None:
            raise BackendUnavailableError("No asynchronous engine attached")

        job_id = await self.engine.submit_job(source_path)
        job = TranscriptionJob(
            job_id=job_id,
            engine=self.engine.name,
            source_path=source_path,
            display_name=display_name or os.path.basename(source_path),
            submitted_at=self._clock(),
        )
        async with self._lock:
            self._jobs.append(job)
            self.store.save(self._jobs)
        logger.info(
            "Tracking %s job %s for %s", job.engine, job.job_id, job.display_name
        )
        self.start()
        return job

    def start(self) -> None:
        """Start background polling if there is anything to poll."""
        if self.is_polling or not self._jobs or self.engine is None:
            return
        self._task = asyncio.create_task(self._poll_loop())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def clear(self) -> None:
        async with self._lock:
            if self._jobs:
                logger.info("Clearing %d pending jobs", len(self._jobs))
            self._jobs = []
            self.store.save(self._jobs)

    async def update_source(
        self, old_path: str, new_path: str, new_name: str
    ) -> bool:
        """Point pending jobs for a renamed recording at its new location."""
        updated = False
        async with self._lock:
            for job in self._jobs:
                if job.source_path == old_path:
                    job.source_path = new_path
                    job.display_name = new_name
                    updated = True
            if updated:
                self.store.save(self._jobs)
        return updated

    async def wait_for(self, job_id: str, timeout: float) -> TranscriptionResult:
        """Block until ``job_id`` completes, polling in the background.

        Raises:
            AsyncBackendFailedError: If the job fails or is abandoned.
            TranscriptionTimeoutError: If ``timeout`` passes first.
        """
        future = self._waiters.get(job_id)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._waiters[job_id] = future
        self.start()
        try:
            return await race_deadline(
                asyncio.shield(future), timeout, label=f"Job {job_id}"
            )
        finally:
            self._waiters.pop(job_id, None)

    async def check_for_completed_jobs(self) -> list[TranscriptionResult]:
        """Run one poll cycle over all pending jobs.

        Waiters and callbacks are resolved after the cycle releases the
        lock, so a callback may call back into the tracker.

        Returns:
            Results of the jobs that completed during this cycle.
        """
        if self.engine is None:
            return []

        outcomes: list[_Outcome] = []
        async with self._lock:
            for job in list(self._jobs):
                try:
                    outcome = await self._check_job(job)
                except Exception:
                    logger.exception(
                        "Unexpected error checking job %s, will retry", job.job_id
                    )
                    continue
                if outcome is not None:
                    outcomes.append(outcome)

        completed: list[TranscriptionResult] = []
        for job, outcome in outcomes:
            waiter = self._waiters.pop(job.job_id, None)
            if isinstance(outcome, TranscriptionResult):
                if waiter is not None and not waiter.done():
                    waiter.set_result(outcome)
                completed.append(outcome)
                await self._notify(self.on_completed, outcome, job)
            else:
                if waiter is not None and not waiter.done():
                    waiter.set_exception(outcome)
                await self._notify(self.on_failed, job, outcome)
        return completed

    async def _check_job(self, job: TranscriptionJob) -> _Outcome | None:
        engine = self.engine
        now = self._clock()

        if job.age(now) > self.max_wait:
            self._remove(job)
            logger.warning(
                "Abandoning job %s after %.0fs without completion",
                job.job_id,
                job.age(now),
            )
            return job, TranscriptionTimeoutError(
                f"Job abandoned after {self.max_wait:.0f}s",
                seconds=self.max_wait,
                job_id=job.job_id,
            )

        if job.engine and job.engine != engine.name:
            logger.debug(
                "Skipping job %s owned by %s (attached: %s)",
                job.job_id,
                job.engine,
                engine.name,
            )
            return None

        try:
            status = await engine.poll_status(job.job_id)
            if status.is_failed:
                raise AsyncBackendFailedError(
                    status.failure_reason or "Unknown error",
                    job_id=job.job_id,
                    provider=engine.name,
                )
            if not status.is_completed:
                return None
            result = await engine.fetch_result(job.job_id)
        except AsyncBackendFailedError as exc:
            self._remove(job)
            logger.error("Job %s failed: %s", job.job_id, exc)
            return job, exc
        except (TranscriptionError, httpx.HTTPError) as exc:
            logger.warning("Job %s check failed, will retry: %s", job.job_id, exc)
            return None

        self._remove(job)
        logger.info("Job %s completed (%d chars)", job.job_id, len(result.full_text))
        return job, result

    def _remove(self, job: TranscriptionJob) -> None:
        self._jobs = [j for j in self._jobs if j.job_id != job.job_id]
        self.store.save(self._jobs)

    async def _notify(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Job callback raised")

    async def _poll_loop(self) -> None:
        logger.info("Polling %d pending jobs every %.0fs", len(self._jobs), self.poll_interval)
        while self._jobs:
            await asyncio.sleep(self.poll_interval)
            await self.check_for_completed_jobs()
        logger.info("No pending jobs, polling stopped")

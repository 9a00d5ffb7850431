"""Request orchestration: route, split, recognize, aggregate.

One request runs at a time. Short recordings, and engines that accept long
audio natively, are recognized whole. Longer recordings are split into
overlapping windows that are exported and recognized strictly in order,
with a cooldown between chunks. Asynchronous engines get the whole file
and hand back a TranscriptionJob; the transcript arrives later through the
job tracker's completion callback.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import tempfile
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from transcription_engine.aggregate import ChunkAccumulator
from transcription_engine.asr.interface import AsyncJobEngine, RecognitionEngine
from transcription_engine.audio.media import Segment, extract_segment, probe_duration
from transcription_engine.chunking import (
    check_chunk_limit,
    needs_chunking,
    plan_chunks,
)
from transcription_engine.config import EngineSettings
from transcription_engine.executor import RecognitionExecutor
from transcription_engine.jobs.tracker import AsyncJobTracker
from transcription_engine.models import (
    EngineKind,
    TranscriptionJob,
    TranscriptionProgress,
    TranscriptionRequest,
    TranscriptionResult,
)
from transcription_engine.observability.metrics import (
    StageTimer,
    TranscriptionMetrics,
    log_transcription_metrics,
)
from transcription_engine.router import EngineRouter
from transcription_engine.utils.errors import (
    AlreadyInProgressError,
    NoSpeechDetectedError,
    NotConfiguredError,
    SourceNotFoundError,
    TooLargeError,
    TranscriptionCancelledError,
    TranscriptionError,
    TranscriptionTimeoutError,
)

logger = logging.getLogger(__name__)

DurationProbe = Callable[[str], Awaitable[float]]
Extractor = Callable[..., Awaitable[Segment]]
ProgressCallback = Callable[[TranscriptionProgress], Any]


class OrchestratorState(str, Enum):
    IDLE = "idle"
    ROUTING = "routing"
    CHUNKING = "chunking"
    DIRECT = "direct"
    EXECUTING = "executing"
    AGGREGATING = "aggregating"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class TranscriptionOrchestrator:
    """Drives one transcription request at a time.

    Args:
        settings: Engine settings (limits, deadlines, cooldown).
        router: Resolves the requested engine.
        tracker: Job tracker for asynchronous engines.
        duration_probe: Returns a recording's duration in seconds.
        extractor: Exports a time window to a standalone file.
        progress_callback: Receives TranscriptionProgress after each chunk.
        sleep: Awaitable sleep used for the inter-chunk cooldown.
    """

    def __init__(
        self,
        settings: EngineSettings,
        router: EngineRouter,
        tracker: AsyncJobTracker | None = None,
        duration_probe: DurationProbe = probe_duration,
        extractor: Extractor = extract_segment,
        progress_callback: ProgressCallback | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.router = router
        self.tracker = tracker
        self.progress_callback = progress_callback
        self._duration_probe = duration_probe
        self._extractor = extractor
        self._sleep = sleep
        self.state = OrchestratorState.IDLE
        self._active = False
        self._cancelled = False
        self._request_token = 0
        self._task: asyncio.Task | None = None
        self._engine: RecognitionEngine | None = None

    @property
    def is_active(self) -> bool:
        return self._active

    async def transcribe(
        self, source_path: str, engine: EngineKind | str | None = None
    ) -> TranscriptionResult | TranscriptionJob:
        """Transcribe a recording, or submit it to an asynchronous engine.

        Args:
            source_path: Path to the recording.
            engine: Engine to request; None uses the configured preference.

        Returns:
            The transcript, or the submitted TranscriptionJob when the
            selected engine is asynchronous.

        Raises:
            AlreadyInProgressError: If another request is executing.
            TranscriptionCancelledError: If cancel() stopped the request.
            TranscriptionError: Any other failure, see utils.errors.
        """
        if self._active:
            raise AlreadyInProgressError()

        try:
            kind = EngineKind.parse(engine)
        except ValueError as exc:
            raise NotConfiguredError(str(exc), engine=str(engine)) from exc

        self._active = True
        self._cancelled = False
        self._request_token += 1
        token = self._request_token
        self._task = asyncio.create_task(self._run(source_path, kind))
        try:
            return await self._task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling() == 0:
                # the request task was cancelled by cancel(), not our caller
                raise TranscriptionCancelledError() from None
            raise
        finally:
            if token == self._request_token:
                self._active = False
                self._task = None
                self._engine = None

    def cancel(self) -> bool:
        """Stop the active request before its next chunk.

        Returns:
            False if nothing was running.
        """
        if not self._active:
            return False
        logger.info("Cancelling transcription")
        self._cancelled = True
        self._active = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self._engine is not None:
            self._engine.reset()
        self.state = OrchestratorState.CANCELLED
        return True

    async def check_for_completed_jobs(self) -> list[TranscriptionResult]:
        if self.tracker is None:
            return []
        return await self.tracker.check_for_completed_jobs()

    async def _run(
        self, source_path: str, kind: EngineKind | None
    ) -> TranscriptionResult | TranscriptionJob:
        metrics = TranscriptionMetrics(source=source_path)
        wall_start = time.monotonic()
        try:
            if not os.path.exists(source_path):
                raise SourceNotFoundError(source_path)

            self.state = OrchestratorState.ROUTING
            with StageTimer("routing") as timer:
                duration = await self._duration_probe(source_path)
                if duration <= 0:
                    raise NoSpeechDetectedError("Audio file is empty")
                engine = await self.router.select(kind)
            metrics.record(timer)
            request = TranscriptionRequest(source_path, duration, engine.kind)
            metrics.audio_duration_seconds = duration
            metrics.engine = engine.name
            self._engine = engine
            self._check_cancelled()

            outcome: TranscriptionResult | TranscriptionJob
            if isinstance(engine, AsyncJobEngine) and self.tracker is not None:
                outcome = await self._submit(engine, request)
                metrics.job_id = outcome.job_id
                metrics.status = "submitted"
            elif (
                not needs_chunking(duration, self.settings.max_chunk_duration)
                or engine.handles_long_audio
            ):
                outcome = await self._transcribe_whole(engine, request, metrics)
                metrics.status = "completed"
            else:
                outcome = await self._transcribe_chunked(engine, request, metrics)
                metrics.status = "completed"

            if isinstance(outcome, TranscriptionResult):
                metrics.chunk_count = outcome.chunk_count
            self.state = OrchestratorState.DONE
            return outcome

        except (asyncio.CancelledError, TranscriptionCancelledError):
            self.state = OrchestratorState.CANCELLED
            metrics.status = "cancelled"
            raise
        except TranscriptionError as exc:
            metrics.status = "failed"
            metrics.error_stage = self.state.value
            metrics.error_message = str(exc)
            self.state = OrchestratorState.FAILED
            logger.error(
                "Transcription of %s failed during %s: %s",
                source_path,
                metrics.error_stage,
                exc,
                extra={"engine": metrics.engine or None, "error": str(exc)},
            )
            raise
        finally:
            metrics.processing_wall_time_seconds = time.monotonic() - wall_start
            log_transcription_metrics(metrics)

    async def _submit(
        self, engine: AsyncJobEngine, request: TranscriptionRequest
    ) -> TranscriptionJob:
        if request.duration > engine.max_duration:
            raise TooLargeError(request.duration, engine.max_duration)
        self.state = OrchestratorState.EXECUTING
        self.tracker.attach(engine)
        job = await self.tracker.submit(request.source_path, request.display_name)
        logger.info(
            "Submitted %s to %s as job %s",
            request.source_path,
            engine.name,
            job.job_id,
            extra={"job_id": job.job_id, "engine": engine.name},
        )
        return job

    async def _transcribe_whole(
        self,
        engine: RecognitionEngine,
        request: TranscriptionRequest,
        metrics: TranscriptionMetrics,
    ) -> TranscriptionResult:
        self.state = OrchestratorState.DIRECT
        duration = request.duration
        if not needs_chunking(duration, self.settings.max_chunk_duration):
            timeout = self.settings.whole_file_timeout
        else:
            timeout = self.settings.request_timeout
        executor = RecognitionExecutor(engine, timeout)
        with StageTimer("recognition") as timer:
            result = await executor.run(request.source_path)
        metrics.record(timer)
        result.chunk_count = 1
        await self._report(
            TranscriptionProgress(
                current_chunk=1,
                total_chunks=1,
                processed_duration=duration,
                total_duration=duration,
                current_text=result.full_text,
                is_complete=True,
            )
        )
        return result

    async def _transcribe_chunked(
        self,
        engine: RecognitionEngine,
        request: TranscriptionRequest,
        metrics: TranscriptionMetrics,
    ) -> TranscriptionResult:
        settings = self.settings
        duration = request.duration
        self.state = OrchestratorState.CHUNKING
        if duration > settings.max_total_duration:
            raise TooLargeError(duration, settings.max_total_duration)
        plan = plan_chunks(duration, settings.max_chunk_duration, settings.chunk_overlap)
        check_chunk_limit(plan, settings.max_chunks, duration, settings.max_total_duration)

        executor = RecognitionExecutor(engine, settings.chunk_timeout)
        accumulator = ChunkAccumulator()
        started = time.monotonic()
        self.state = OrchestratorState.EXECUTING

        with tempfile.TemporaryDirectory(prefix="transcription_") as work_dir:
            for window in plan:
                self._check_cancelled()
                logger.info(
                    "Processing chunk %d/%d (%.1f-%.1fs)",
                    window.index + 1,
                    len(plan),
                    window.start,
                    window.end,
                    extra={"chunk_index": window.index + 1, "engine": engine.name},
                )
                try:
                    with StageTimer("extraction") as timer:
                        segment = await self._extractor(
                            request.source_path,
                            window.start,
                            window.end,
                            output_dir=work_dir,
                            timeout=settings.export_timeout,
                        )
                    metrics.record(timer)
                    with StageTimer("recognition") as timer:
                        result = await self._recognize_chunk(executor, segment)
                    metrics.record(timer)
                except TranscriptionCancelledError:
                    raise
                except TranscriptionError as exc:
                    raise accumulator.fail(window.index, exc) from exc

                accumulator.add(result, window.start)
                await self._report(
                    TranscriptionProgress(
                        current_chunk=window.index + 1,
                        total_chunks=len(plan),
                        processed_duration=window.end,
                        total_duration=duration,
                        current_text=accumulator.text_so_far,
                    )
                )

                elapsed = time.monotonic() - started
                if elapsed > settings.request_timeout:
                    raise TranscriptionTimeoutError(
                        f"Transcription exceeded {settings.request_timeout:.0f}s "
                        f"after {window.index + 1} of {len(plan)} chunks",
                        seconds=settings.request_timeout,
                    )

                if window.index < len(plan) - 1 and settings.chunk_cooldown > 0:
                    await self._sleep(settings.chunk_cooldown)
                    self._check_cancelled()

        self.state = OrchestratorState.AGGREGATING
        final = accumulator.result(processing_time=time.monotonic() - started)
        if not final.full_text:
            raise NoSpeechDetectedError()
        await self._report(
            TranscriptionProgress(
                current_chunk=len(plan),
                total_chunks=len(plan),
                processed_duration=duration,
                total_duration=duration,
                current_text=final.full_text,
                is_complete=True,
            )
        )
        return final

    async def _recognize_chunk(
        self, executor: RecognitionExecutor, segment: Segment
    ) -> TranscriptionResult:
        """A silent chunk contributes no text instead of failing the request."""
        try:
            return await executor.run_segment(segment)
        except NoSpeechDetectedError:
            logger.info("No speech in %.1f-%.1fs", segment.start, segment.end)
            return TranscriptionResult(
                full_text="", segments=[], engine=executor.engine.name
            )

    def _check_cancelled(self) -> None:
        if self._cancelled:
            raise TranscriptionCancelledError()

    async def _report(self, progress: TranscriptionProgress) -> None:
        if self.progress_callback is None:
            return
        outcome = self.progress_callback(progress)
        if inspect.isawaitable(outcome):
            await outcome

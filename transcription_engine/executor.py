"""Recognition executor: one backend call, one outcome, one deadline.

Backends stream events. Partial results are ignored, transient errors are
absorbed while the backend still reports itself available, and the first
terminal signal settles a single-shot latch. Everything later is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing

from transcription_engine.asr.interface import EventType, RecognitionEngine
from transcription_engine.audio.media import Segment
from transcription_engine.models import TranscriptionResult
from transcription_engine.utils.deadline import race_deadline
from transcription_engine.utils.errors import (
    BackendUnavailableError,
    NoSpeechDetectedError,
    RecognitionFailedError,
    TranscriptionError,
)

logger = logging.getLogger(__name__)


class ResultLatch:
    """Single-shot outcome channel.

    The first delivery wins; later deliveries return False and are
    discarded.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[TranscriptionResult] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def is_set(self) -> bool:
        return self._future.done()

    def deliver_result(self, result: TranscriptionResult) -> bool:
        if self._future.done():
            return False
        self._future.set_result(result)
        return True

    def deliver_error(self, error: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(error)
        return True

    async def wait(self) -> TranscriptionResult:
        return await self._future


class RecognitionExecutor:
    """Runs recognition on one engine, serialized by the engine's lock.

    Args:
        engine: Backend to drive.
        timeout: Default deadline in seconds for each run.
    """

    def __init__(self, engine: RecognitionEngine, timeout: float) -> None:
        self.engine = engine
        self.timeout = timeout

    async def run(
        self, audio_path: str, *, timeout: float | None = None
    ) -> TranscriptionResult:
        """Recognize ``audio_path`` and return exactly one outcome.

        Raises:
            TranscriptionTimeoutError: If the deadline passes first.
            RecognitionFailedError: On a fatal backend error, or if the
                event stream ends without a final result.
            BackendUnavailableError: If a transient error arrives and the
                backend no longer reports itself available.
            NoSpeechDetectedError: If the final result has no text.
        """
        deadline = timeout if timeout is not None else self.timeout
        async with self.engine.lock:
            return await race_deadline(
                self._consume(audio_path),
                deadline,
                label=f"Recognition with {self.engine.name}",
            )

    async def run_segment(
        self, segment: Segment, timeout: float | None = None
    ) -> TranscriptionResult:
        """Recognize an exported segment, removing its file afterwards."""
        try:
            return await self.run(segment.path, timeout=timeout)
        finally:
            segment.cleanup()

    async def _consume(self, audio_path: str) -> TranscriptionResult:
        latch = ResultLatch()
        events = self.engine.recognize(audio_path)

        async with aclosing(events):
            async for event in events:
                if event.type is EventType.PARTIAL:
                    continue

                if event.type is EventType.RECOVERABLE_ERROR:
                    logger.warning(
                        "Recoverable error from %s: %s", self.engine.name, event.error
                    )
                    if not await self.engine.is_available():
                        latch.deliver_error(
                            BackendUnavailableError(
                                f"{self.engine.name} became unavailable: {event.error}",
                                engine=self.engine.name,
                            )
                        )
                        break
                    continue

                if event.type is EventType.FATAL_ERROR:
                    latch.deliver_error(self._as_failure(event.error))
                    break

                result = event.result
                if result is None or not result.full_text.strip():
                    latch.deliver_error(NoSpeechDetectedError())
                else:
                    latch.deliver_result(result)
                break

        if not latch.is_set:
            latch.deliver_error(
                RecognitionFailedError(
                    "Recognition ended without a final result",
                    provider=self.engine.name,
                )
            )
        return await latch.wait()

    def _as_failure(self, error: BaseException | None) -> TranscriptionError:
        if isinstance(error, TranscriptionError):
            return error
        return RecognitionFailedError(
            f"Recognition failed: {error}", provider=self.engine.name
        )

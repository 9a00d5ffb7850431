"""Abstract recognition engine interface.

Engines stream RecognitionEvents from recognize(); the executor decides
which of them ends the attempt. Engines that hand back a job handle instead
of a result subclass AsyncJobEngine and are driven by the job tracker.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum

import httpx

from transcription_engine.models import EngineKind, TranscriptionResult
from transcription_engine.utils.errors import (
    AsyncBackendFailedError,
    RecoverableRecognitionError,
    TranscriptionError,
)


class EventType(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"
    RECOVERABLE_ERROR = "recoverable_error"
    FATAL_ERROR = "fatal_error"


@dataclass
class RecognitionEvent:
    """One signal from a backend during a recognition attempt."""

    type: EventType
    result: TranscriptionResult | None = None
    error: BaseException | None = None

    @classmethod
    def partial(cls, result: TranscriptionResult) -> RecognitionEvent:
        return cls(EventType.PARTIAL, result=result)

    @classmethod
    def final(cls, result: TranscriptionResult) -> RecognitionEvent:
        return cls(EventType.FINAL, result=result)

    @classmethod
    def recoverable(cls, error: BaseException) -> RecognitionEvent:
        return cls(EventType.RECOVERABLE_ERROR, error=error)

    @classmethod
    def fatal(cls, error: BaseException) -> RecognitionEvent:
        return cls(EventType.FATAL_ERROR, error=error)


class JobState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobStatus:
    """Status of a remote job as reported by its backend."""

    state: JobState
    failure_reason: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.state is JobState.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.state is JobState.FAILED


class RecognitionEngine(ABC):
    """Abstract base class for recognition backends.

    Only one recognition call may be outstanding per engine; callers hold
    ``lock`` around recognize().
    """

    kind: EngineKind
    is_async: bool = False
    handles_long_audio: bool = False

    def __init__(self) -> None:
        self.lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    async def is_available(self) -> bool:
        """Report whether the backend can accept work right now."""

    @abstractmethod
    def recognize(self, audio_path: str) -> AsyncIterator[RecognitionEvent]:
        """Recognize a standalone audio file.

        Args:
            audio_path: Path to an audio file playable without the original.

        Yields:
            RecognitionEvents; a FINAL or FATAL_ERROR event ends the attempt.
        """

    def reset(self) -> None:
        """Drop any stateful handle so the next call starts fresh."""

    async def aclose(self) -> None:
        """Release network clients and other resources."""


class AsyncJobEngine(RecognitionEngine):
    """A backend that accepts whole recordings and completes them later."""

    is_async = True
    handles_long_audio = True
    max_duration: float = 4 * 60 * 60
    inline_poll_interval: float = 5.0

    @abstractmethod
    async def submit_job(self, audio_path: str) -> str:
        """Submit a recording and return the backend's job identifier."""

    @abstractmethod
    async def poll_status(self, job_id: str) -> JobStatus:
        """Fetch the current status of a submitted job."""

    @abstractmethod
    async def fetch_result(self, job_id: str) -> TranscriptionResult:
        """Retrieve the transcript of a completed job."""

    async def recognize(self, audio_path: str) -> AsyncIterator[RecognitionEvent]:
        """Submit and poll inline; used only when no tracker is attached.

        Transient poll or download errors are reported as recoverable events
        and polling continues; the consumer decides when to give up.
        """
        try:
            job_id = await self.submit_job(audio_path)
        except TranscriptionError as exc:
            yield RecognitionEvent.fatal(exc)
            return

        while True:
            try:
                status = await self.poll_status(job_id)
                result = (
                    await self.fetch_result(job_id) if status.is_completed else None
                )
            except AsyncBackendFailedError as exc:
                yield RecognitionEvent.fatal(exc)
                return
            except (RecoverableRecognitionError, httpx.HTTPError) as exc:
                yield RecognitionEvent.recoverable(exc)
                await asyncio.sleep(self.inline_poll_interval)
                continue

            if result is not None:
                yield RecognitionEvent.final(result)
                return
            if status.is_failed:
                yield RecognitionEvent.fatal(
                    AsyncBackendFailedError(
                        status.failure_reason or "Unknown error",
                        job_id=job_id,
                        provider=self.name,
                    )
                )
                return
            await asyncio.sleep(self.inline_poll_interval)

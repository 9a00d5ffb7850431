"""On-device transcription with faster-whisper.

The WhisperModel is a single stateful handle owned by this engine. It is
created lazily, shared by every call, and dropped by reset() so that the
next call loads a fresh one. Decoding runs in a worker thread; each decoded
segment is streamed back as a partial event before the final result.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
import threading
import time
from collections.abc import AsyncIterator
from typing import Any

from transcription_engine.asr.interface import RecognitionEngine, RecognitionEvent
from transcription_engine.models import (
    EngineKind,
    TranscriptionResult,
    TranscriptSegment,
)
from transcription_engine.utils.errors import (
    BackendUnavailableError,
    RecognitionFailedError,
)

logger = logging.getLogger(__name__)

_DONE = object()


class LocalWhisperEngine(RecognitionEngine):
    """faster-whisper running in-process.

    Args:
        model_name: Whisper model size or path (e.g. "small").
        device: Optional device ("cpu", "cuda").
        compute_type: Optional CTranslate2 compute type.
        language: Optional language code; None lets Whisper detect it.
    """

    kind = EngineKind.LOCAL_WHISPER

    def __init__(
        self,
        model_name: str = "small",
        device: str | None = None,
        compute_type: str | None = None,
        language: str | None = None,
    ) -> None:
        super().__init__()
        self._model_name = model_name
        self._device = device
        self._compute_type = compute_type
        self._language = language
        self._model: Any = None
        self._model_lock = threading.Lock()
        self._generation = 0

    async def is_available(self) -> bool:
        return importlib.util.find_spec("faster_whisper") is not None

    def reset(self) -> None:
        with self._model_lock:
            if self._model is not None:
                logger.info("Dropping faster-whisper model handle")
            self._model = None
            self._generation += 1

    def _ensure_model(self) -> Any:
        # the load runs unlocked; a reset() during it discards the result
        with self._model_lock:
            if self._model is not None:
                return self._model
            generation = self._generation

        try:
            from faster_whisper import WhisperModel
        except ImportError as exc:
            raise BackendUnavailableError(
                "faster-whisper is required for on-device transcription",
                engine=self.name,
            ) from exc

        kwargs: dict[str, str] = {}
        if self._device:
            kwargs["device"] = self._device
        if self._compute_type:
            kwargs["compute_type"] = self._compute_type
        logger.info("Loading faster-whisper model '%s'", self._model_name)
        model = WhisperModel(self._model_name, **kwargs)

        with self._model_lock:
            if generation == self._generation and self._model is None:
                self._model = model
        return model

    async def recognize(self, audio_path: str) -> AsyncIterator[RecognitionEvent]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Any] = asyncio.Queue()
        stop = threading.Event()

        def emit(item: Any) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(queue.put_nowait, item)

        def decode() -> None:
            try:
                model = self._ensure_model()
                segments, _info = model.transcribe(audio_path, language=self._language)
                for seg in segments:
                    if stop.is_set():
                        return
                    emit(
                        TranscriptSegment(
                            speaker="Speaker",
                            text=seg.text.strip(),
                            start_time=float(seg.start),
                            end_time=float(seg.end),
                        )
                    )
                emit(_DONE)
            except Exception as exc:
                emit(exc)

        started = time.monotonic()
        collected: list[TranscriptSegment] = []
        worker = loop.run_in_executor(None, decode)

        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                if isinstance(item, BackendUnavailableError):
                    yield RecognitionEvent.fatal(item)
                    return
                if isinstance(item, Exception):
                    yield RecognitionEvent.fatal(
                        RecognitionFailedError(
                            f"On-device recognition failed: {item}",
                            provider=self.name,
                        )
                    )
                    return
                collected.append(item)
                yield RecognitionEvent.partial(self._build_result(collected, started))
        finally:
            stop.set()

        await worker
        yield RecognitionEvent.final(self._build_result(collected, started))

    def _build_result(
        self, segments: list[TranscriptSegment], started: float
    ) -> TranscriptionResult:
        return TranscriptionResult(
            full_text=" ".join(seg.text for seg in segments if seg.text),
            segments=list(segments),
            processing_time=time.monotonic() - started,
            chunk_count=1,
            engine=self.name,
        )

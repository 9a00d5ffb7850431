"""OpenAI audio transcription engine.

Posts each audio file to ``/audio/transcriptions``. ``whisper-1`` is asked
for verbose JSON so segment timings survive; the GPT-4o transcribe models
only return text, which becomes a single segment.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import time
from collections.abc import AsyncIterator

import httpx

from transcription_engine.asr.interface import RecognitionEngine, RecognitionEvent
from transcription_engine.models import (
    EngineKind,
    TranscriptionResult,
    TranscriptSegment,
)
from transcription_engine.utils.errors import (
    NotConfiguredError,
    RecognitionFailedError,
    RecoverableRecognitionError,
)
from transcription_engine.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
SUPPORTED_MODELS = ("gpt-4o-transcribe", "gpt-4o-mini-transcribe", "whisper-1")
MAX_UPLOAD_BYTES = 25 * 1024 * 1024
TRANSIENT_STATUS_CODES = {429, 500, 502, 503}
MAX_ATTEMPTS = 3
RECOVERY_DELAY_SECONDS = 5.0


class OpenAITranscribeEngine(RecognitionEngine):
    """OpenAI hosted transcription.

    Args:
        api_key: OpenAI API key.
        model: One of SUPPORTED_MODELS.
        base_url: API base URL (OpenAI-compatible servers work too).
        language: Language hint sent with each request.
        client: Optional shared httpx client.
    """

    kind = EngineKind.OPENAI

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini-transcribe",
        base_url: str = DEFAULT_BASE_URL,
        language: str = "en",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        if not api_key:
            raise NotConfiguredError(
                "OpenAI API key is not configured", engine=self.kind.value
            )
        if model not in SUPPORTED_MODELS:
            raise NotConfiguredError(
                f"Unsupported OpenAI transcription model: '{model}'",
                engine=self.kind.value,
            )
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._language = language
        self._client = client or httpx.AsyncClient(timeout=300.0)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def is_available(self) -> bool:
        """Validate the key against the models endpoint."""
        try:
            response = await self._client.get(
                f"{self._base_url}/models", headers=self._headers(), timeout=10.0
            )
        except httpx.HTTPError as exc:
            logger.warning("OpenAI connectivity check failed: %s", exc)
            return False
        if response.status_code != 200:
            logger.warning(
                "OpenAI connectivity check returned HTTP %d", response.status_code
            )
            return False
        return True

    async def recognize(self, audio_path: str) -> AsyncIterator[RecognitionEvent]:
        size = os.path.getsize(audio_path)
        if size > MAX_UPLOAD_BYTES:
            yield RecognitionEvent.fatal(
                RecognitionFailedError(
                    f"File exceeds OpenAI upload limit ({size} bytes)",
                    provider=self.name,
                )
            )
            return

        started = time.monotonic()
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                body = await self._post_transcription(audio_path)
            except (RecoverableRecognitionError, httpx.TransportError) as exc:
                if attempt == MAX_ATTEMPTS:
                    yield RecognitionEvent.fatal(
                        RecognitionFailedError(
                            f"OpenAI still unavailable after {attempt} attempts: {exc}",
                            provider=self.name,
                        )
                    )
                    return
                yield RecognitionEvent.recoverable(exc)
                await asyncio.sleep(RECOVERY_DELAY_SECONDS)
                continue
            except RecognitionFailedError as exc:
                yield RecognitionEvent.fatal(exc)
                return
            except httpx.HTTPError as exc:
                yield RecognitionEvent.fatal(
                    RecognitionFailedError(
                        f"OpenAI request failed: {exc}", provider=self.name
                    )
                )
                return

            yield RecognitionEvent.final(
                self._convert_response(body, time.monotonic() - started)
            )
            return

    @retry_with_backoff(max_retries=3, base_delay=1.0)
    async def _post_transcription(self, audio_path: str) -> dict:
        response_format = "verbose_json" if self._model == "whisper-1" else "json"
        content_type = mimetypes.guess_type(audio_path)[0] or "audio/mpeg"
        data = {
            "model": self._model,
            "response_format": response_format,
            "language": self._language,
            "temperature": "0",
        }
        with open(audio_path, "rb") as audio_file:
            files = {
                "file": (os.path.basename(audio_path), audio_file, content_type)
            }
            response = await self._client.post(
                f"{self._base_url}/audio/transcriptions",
                headers=self._headers(),
                data=data,
                files=files,
            )

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise RecoverableRecognitionError(
                f"OpenAI busy (HTTP {response.status_code})", provider=self.name
            )
        if response.status_code != 200:
            message = response.text
            try:
                message = response.json()["error"]["message"]
            except (ValueError, KeyError, TypeError):
                pass
            raise RecognitionFailedError(
                f"OpenAI API error (HTTP {response.status_code}): {message}",
                provider=self.name,
            )
        return response.json()

    def _convert_response(self, body: dict, elapsed: float) -> TranscriptionResult:
        text = (body.get("text") or "").strip()
        segments = [
            TranscriptSegment(
                speaker="Speaker",
                text=(seg.get("text") or "").strip(),
                start_time=float(seg.get("start", 0.0)),
                end_time=float(seg.get("end", 0.0)),
            )
            for seg in body.get("segments") or []
        ]
        if not segments and text:
            segments = [
                TranscriptSegment(
                    speaker="Speaker",
                    text=text,
                    start_time=0.0,
                    end_time=float(body.get("duration", 0.0)),
                )
            ]
        return TranscriptionResult(
            full_text=text,
            segments=segments,
            processing_time=elapsed,
            chunk_count=1,
            engine=self.name,
        )

"""Self-hosted Whisper ASR webservice engine.

Talks to the REST API of a whisper-asr-webservice instance: multipart
upload to ``/asr`` with ``output=json`` returns text plus timed segments.
"""

from __future__ import annotations

import asyncio
import logging
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

REQUEST_TIMEOUT_SECONDS = 1800.0
CONNECT_CHECK_TIMEOUT_SECONDS = 5.0
TRANSIENT_STATUS_CODES = {429, 502, 503}
MAX_ATTEMPTS = 3
RECOVERY_DELAY_SECONDS = 10.0


class WhisperServerEngine(RecognitionEngine):
    """Whisper ASR webservice over REST.

    Args:
        base_url: Server base URL including scheme and port.
        language: Language code passed to the server.
        client: Optional shared httpx client.
    """

    kind = EngineKind.WHISPER_SERVER

    def __init__(
        self,
        base_url: str,
        language: str = "en",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        if not base_url:
            raise NotConfiguredError(
                "Whisper server URL is not configured", engine=self.kind.value
            )
        self._base_url = base_url.rstrip("/")
        self._language = language
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def is_available(self) -> bool:
        """The server answers HTTP at all; 5xx counts as down."""
        try:
            response = await self._client.get(
                f"{self._base_url}/docs", timeout=CONNECT_CHECK_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as exc:
            logger.warning("Whisper server unreachable at %s: %s", self._base_url, exc)
            return False
        return response.status_code < 500

    async def recognize(self, audio_path: str) -> AsyncIterator[RecognitionEvent]:
        started = time.monotonic()
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                body = await self._post_audio(audio_path)
            except (RecoverableRecognitionError, httpx.TransportError) as exc:
                if attempt == MAX_ATTEMPTS:
                    yield RecognitionEvent.fatal(
                        RecognitionFailedError(
                            f"Whisper server still busy after {attempt} attempts: {exc}",
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
                        f"Whisper server request failed: {exc}", provider=self.name
                    )
                )
                return

            yield RecognitionEvent.final(
                self._convert_response(body, time.monotonic() - started)
            )
            return

    @retry_with_backoff(max_retries=2, base_delay=2.0)
    async def _post_audio(self, audio_path: str) -> dict:
        params = {
            "output": "json",
            "task": "transcribe",
            "language": self._language,
            "encode": "true",
            "word_timestamps": "false",
            "vad_filter": "false",
        }
        with open(audio_path, "rb") as audio_file:
            files = {
                "audio_file": (
                    os.path.basename(audio_path),
                    audio_file,
                    "application/octet-stream",
                )
            }
            response = await self._client.post(
                f"{self._base_url}/asr", params=params, files=files
            )

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise RecoverableRecognitionError(
                f"Whisper server busy (HTTP {response.status_code})",
                provider=self.name,
            )
        if response.status_code != 200:
            raise RecognitionFailedError(
                f"Whisper server error (HTTP {response.status_code}): {response.text}",
                provider=self.name,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RecognitionFailedError(
                "Whisper server returned invalid JSON", provider=self.name
            ) from exc

    def _convert_response(self, body: dict, elapsed: float) -> TranscriptionResult:
        segments = [
            TranscriptSegment(
                speaker=seg.get("speaker") or "Speaker",
                text=(seg.get("text") or "").strip(),
                start_time=float(seg.get("start", 0.0)),
                end_time=float(seg.get("end", 0.0)),
            )
            for seg in body.get("segments") or []
        ]
        text = (body.get("text") or "").strip()
        if not text:
            text = " ".join(seg.text for seg in segments if seg.text)
        return TranscriptionResult(
            full_text=text,
            segments=segments,
            processing_time=elapsed,
            chunk_count=1,
            engine=self.name,
        )

"""Speechmatics Batch API engine.

Submits whole recordings to the Speechmatics Batch API v2 and exposes the
job lifecycle (submit, poll, fetch) to the job tracker. Speaker-diarized
word results are grouped into TranscriptSegments.
"""

from __future__ import annotations

import json
import logging
import os

import httpx

from transcription_engine.asr.interface import AsyncJobEngine, JobState, JobStatus
from transcription_engine.models import (
    EngineKind,
    TranscriptionResult,
    TranscriptSegment,
)
from transcription_engine.utils.errors import (
    AsyncBackendFailedError,
    NotConfiguredError,
    RecoverableRecognitionError,
)
from transcription_engine.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://asr.api.speechmatics.com/v2"
TRANSIENT_STATUS_CODES = {429, 503}
PENDING_STATUSES = {"running", "queued", "accepted"}
FAILED_STATUSES = {"rejected", "deleted", "expired"}


class SpeechmaticsEngine(AsyncJobEngine):
    """Speechmatics Batch API engine with speaker diarization.

    Args:
        api_key: Speechmatics API key for authentication.
        base_url: Speechmatics API base URL (default production endpoint).
        language: Transcription language code.
        client: Optional shared httpx client (tests inject a mock transport).
    """

    kind = EngineKind.SPEECHMATICS

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        language: str = "en",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        if not api_key:
            raise NotConfiguredError(
                "Speechmatics API key is not configured", engine=self.kind.value
            )
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._language = language
        self._client = client or httpx.AsyncClient(timeout=60.0)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def is_available(self) -> bool:
        """Credentials are present; reachability is checked per job."""
        return bool(self._api_key)

    @retry_with_backoff(max_retries=3, base_delay=1.0)
    async def submit_job(self, audio_path: str) -> str:
        """Submit an audio file for transcription.

        Returns:
            The Speechmatics job ID.

        Raises:
            RecoverableRecognitionError: On 429/503 (retried).
            AsyncBackendFailedError: If submission is refused.
        """
        config = {
            "type": "transcription",
            "transcription_config": {
                "language": self._language,
                "diarization": "speaker",
            },
        }

        url = f"{self._base_url}/jobs/"
        try:
            with open(audio_path, "rb") as audio_file:
                files = {
                    "data_file": (
                        os.path.basename(audio_path),
                        audio_file,
                        "application/octet-stream",
                    ),
                }
                data = {"config": json.dumps(config)}
                response = await self._client.post(
                    url, headers=self._headers(), files=files, data=data
                )
        except OSError as exc:
            raise AsyncBackendFailedError(
                f"Failed to read audio for submission: {exc}",
                provider=self.name,
            ) from exc

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise RecoverableRecognitionError(
                f"Speechmatics busy during job submission "
                f"(HTTP {response.status_code})",
                provider=self.name,
            )
        if response.status_code != 201:
            raise AsyncBackendFailedError(
                f"Job submission failed with status {response.status_code}: "
                f"{response.text}",
                provider=self.name,
            )

        job_id = response.json().get("id")
        if not job_id:
            raise AsyncBackendFailedError(
                "No job ID in submission response", provider=self.name
            )

        logger.info("Submitted Speechmatics job %s", job_id)
        return job_id

    async def poll_status(self, job_id: str) -> JobStatus:
        """Check a job's status once.

        Transport errors and transient status codes raise
        RecoverableRecognitionError so the tracker keeps the job.
        """
        url = f"{self._base_url}/jobs/{job_id}"
        try:
            response = await self._client.get(url, headers=self._headers())
        except httpx.HTTPError as exc:
            raise RecoverableRecognitionError(
                f"Failed to poll job status: {exc}",
                job_id=job_id,
                provider=self.name,
            ) from exc

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise RecoverableRecognitionError(
                f"Speechmatics busy while polling (HTTP {response.status_code})",
                job_id=job_id,
                provider=self.name,
            )
        if response.status_code == 404:
            return JobStatus(JobState.FAILED, failure_reason="Job not found")
        if response.status_code != 200:
            raise RecoverableRecognitionError(
                f"Poll failed with status {response.status_code}: {response.text}",
                job_id=job_id,
                provider=self.name,
            )

        status = response.json().get("job", {}).get("status", "")
        if status == "done":
            return JobStatus(JobState.COMPLETED)
        if status in FAILED_STATUSES:
            return JobStatus(JobState.FAILED, failure_reason=f"Job was {status}")
        return JobStatus(JobState.PENDING)

    async def fetch_result(self, job_id: str) -> TranscriptionResult:
        """Fetch and convert the transcript of a completed job.

        Raises:
            RecoverableRecognitionError: If the fetch fails; the job stays
                pending and is fetched again next cycle.
        """
        url = f"{self._base_url}/jobs/{job_id}/transcript"
        params = {"format": "json-v2"}

        try:
            response = await self._client.get(
                url, headers=self._headers(), params=params
            )
        except httpx.HTTPError as exc:
            raise RecoverableRecognitionError(
                f"Failed to fetch transcript: {exc}",
                job_id=job_id,
                provider=self.name,
            ) from exc

        if response.status_code != 200:
            raise RecoverableRecognitionError(
                f"Transcript fetch failed with status "
                f"{response.status_code}: {response.text}",
                job_id=job_id,
                provider=self.name,
            )

        return self._convert_response(response.json())

    def _convert_response(self, raw_response: dict) -> TranscriptionResult:
        """Convert a Speechmatics json-v2 response to a TranscriptionResult.

        Groups consecutive words by speaker into TranscriptSegments.
        Speaker labels are formatted as 'Speaker 1', 'Speaker 2', etc.
        Punctuation entries attach to the preceding word.
        """
        results = raw_response.get("results", [])

        speaker_map: dict[str, str] = {}
        segments: list[TranscriptSegment] = []
        current: TranscriptSegment | None = None

        for result in results:
            alternatives = result.get("alternatives", [])
            if not alternatives:
                continue
            alt = alternatives[0]
            content = alt.get("content", "")

            if result.get("type") == "punctuation":
                if current is not None:
                    current.text += content
                continue
            if result.get("type") != "word":
                continue

            raw_speaker = alt.get("speaker", "UU")
            if raw_speaker not in speaker_map:
                speaker_map[raw_speaker] = f"Speaker {len(speaker_map) + 1}"
            speaker = speaker_map[raw_speaker]

            start = float(result.get("start_time", 0.0))
            end = float(result.get("end_time", 0.0))

            if current is None or current.speaker != speaker:
                current = TranscriptSegment(
                    speaker=speaker, text=content, start_time=start, end_time=end
                )
                segments.append(current)
            else:
                current.text = f"{current.text} {content}"
                current.end_time = end

        full_text = " ".join(segment.text for segment in segments)
        return TranscriptionResult(
            full_text=full_text,
            segments=segments,
            chunk_count=1,
            engine=self.name,
        )

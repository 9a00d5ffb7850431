"""AWS Transcribe engine.

Uploads the recording to S3, starts a transcription job writing its output
back to the same bucket, and reads the JSON transcript once the job is done.
boto3 is synchronous, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid

import boto3
from botocore.exceptions import BotoCoreError, ClientError

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

logger = logging.getLogger(__name__)

MAX_DURATION_SECONDS = 4 * 60 * 60
MEDIA_FORMATS = {
    ".m4a": "mp4",
    ".mp4": "mp4",
    ".wav": "wav",
    ".mp3": "mp3",
    ".flac": "flac",
    ".ogg": "ogg",
    ".webm": "webm",
}


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


class AWSTranscribeEngine(AsyncJobEngine):
    """AWS Transcribe batch engine with speaker labels.

    Args:
        region: AWS region of the Transcribe service and bucket.
        access_key_id: AWS access key.
        secret_access_key: AWS secret key.
        bucket_name: S3 bucket used for media upload and transcript output.
        language_code: Transcribe language code.
    """

    kind = EngineKind.AWS_TRANSCRIBE
    max_duration = MAX_DURATION_SECONDS

    def __init__(
        self,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        bucket_name: str,
        language_code: str = "en-US",
    ) -> None:
        super().__init__()
        if not (access_key_id and secret_access_key):
            raise NotConfiguredError(
                "AWS credentials are not configured", engine=self.kind.value
            )
        if not bucket_name:
            raise NotConfiguredError(
                "AWS Transcribe bucket is not configured", engine=self.kind.value
            )
        self.bucket_name = bucket_name
        self._language_code = language_code
        session_kwargs = {
            "aws_access_key_id": access_key_id,
            "aws_secret_access_key": secret_access_key,
            "region_name": region,
        }
        self._s3 = boto3.client("s3", **session_kwargs)
        self._transcribe = boto3.client("transcribe", **session_kwargs)

    async def is_available(self) -> bool:
        return True

    async def submit_job(self, audio_path: str) -> str:
        """Upload the recording and start a transcription job.

        Returns:
            The Transcribe job name.

        Raises:
            AsyncBackendFailedError: If the upload or job start is refused.
        """
        extension = os.path.splitext(audio_path)[1].lower()
        job_name = f"transcription-{uuid.uuid4()}"
        media_key = f"media/{job_name}{extension}"

        try:
            await asyncio.to_thread(
                self._s3.upload_file, audio_path, self.bucket_name, media_key
            )
            await asyncio.to_thread(
                self._transcribe.start_transcription_job,
                TranscriptionJobName=job_name,
                LanguageCode=self._language_code,
                MediaFormat=MEDIA_FORMATS.get(extension, "mp4"),
                Media={"MediaFileUri": f"s3://{self.bucket_name}/{media_key}"},
                OutputBucketName=self.bucket_name,
                OutputKey=f"transcripts/{job_name}.json",
                Settings={"ShowSpeakerLabels": True, "MaxSpeakerLabels": 10},
            )
        except ClientError as exc:
            raise AsyncBackendFailedError(
                f"Failed to start transcription job: {_error_code(exc)}",
                provider=self.name,
            ) from exc
        except (BotoCoreError, OSError) as exc:
            raise AsyncBackendFailedError(
                f"Failed to start transcription job: {exc}", provider=self.name
            ) from exc

        logger.info("Started AWS Transcribe job %s", job_name)
        return job_name

    async def poll_status(self, job_id: str) -> JobStatus:
        try:
            response = await asyncio.to_thread(
                self._transcribe.get_transcription_job,
                TranscriptionJobName=job_id,
            )
        except ClientError as exc:
            code = _error_code(exc)
            if code == "BadRequestException":
                return JobStatus(JobState.FAILED, failure_reason="Job not found")
            raise RecoverableRecognitionError(
                f"Failed to check job status: {code}",
                job_id=job_id,
                provider=self.name,
            ) from exc
        except BotoCoreError as exc:
            raise RecoverableRecognitionError(
                f"Failed to check job status: {exc}",
                job_id=job_id,
                provider=self.name,
            ) from exc

        job = response.get("TranscriptionJob", {})
        status = job.get("TranscriptionJobStatus", "FAILED")
        if status == "COMPLETED":
            return JobStatus(JobState.COMPLETED)
        if status == "FAILED":
            return JobStatus(
                JobState.FAILED,
                failure_reason=job.get("FailureReason", "Unknown error"),
            )
        return JobStatus(JobState.PENDING)

    async def fetch_result(self, job_id: str) -> TranscriptionResult:
        key = f"transcripts/{job_id}.json"
        try:
            response = await asyncio.to_thread(
                self._s3.get_object, Bucket=self.bucket_name, Key=key
            )
            body = await asyncio.to_thread(response["Body"].read)
        except ClientError as exc:
            raise RecoverableRecognitionError(
                f"Failed to download transcript '{key}': {_error_code(exc)}",
                job_id=job_id,
                provider=self.name,
            ) from exc
        except BotoCoreError as exc:
            raise RecoverableRecognitionError(
                f"Failed to download transcript '{key}': {exc}",
                job_id=job_id,
                provider=self.name,
            ) from exc

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise AsyncBackendFailedError(
                f"Transcript for job {job_id} is not valid JSON",
                job_id=job_id,
                provider=self.name,
            ) from exc
        return self._convert_response(payload, job_id)

    def _convert_response(self, payload: dict, job_id: str) -> TranscriptionResult:
        """Convert Transcribe output JSON into a TranscriptionResult.

        Uses speaker_labels segments when present, otherwise one segment
        spanning the whole transcript.
        """
        if "Message" in payload:
            raise AsyncBackendFailedError(
                payload["Message"], job_id=job_id, provider=self.name
            )

        results = payload.get("results", {})
        transcripts = results.get("transcripts") or []
        if not transcripts or "transcript" not in transcripts[0]:
            raise AsyncBackendFailedError(
                "Invalid transcript format", job_id=job_id, provider=self.name
            )
        full_text = transcripts[0]["transcript"]

        # Word contents keyed by start time, used to rebuild speaker text
        words_by_start: dict[str, str] = {}
        for item in results.get("items", []):
            if item.get("type") != "pronunciation":
                continue
            alternatives = item.get("alternatives") or [{}]
            words_by_start[item.get("start_time", "")] = alternatives[0].get(
                "content", ""
            )

        segments: list[TranscriptSegment] = []
        for seg in results.get("speaker_labels", {}).get("segments", []):
            words = [
                words_by_start.get(item.get("start_time", ""), "")
                for item in seg.get("items", [])
            ]
            segments.append(
                TranscriptSegment(
                    speaker=seg.get("speaker_label", "Speaker"),
                    text=" ".join(word for word in words if word),
                    start_time=float(seg.get("start_time", 0.0)),
                    end_time=float(seg.get("end_time", 0.0)),
                )
            )

        if not segments:
            segments = [
                TranscriptSegment(
                    speaker="Speaker", text=full_text, start_time=0.0, end_time=0.0
                )
            ]

        return TranscriptionResult(
            full_text=full_text,
            segments=segments,
            chunk_count=1,
            engine=self.name,
        )

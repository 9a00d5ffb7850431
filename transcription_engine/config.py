"""Settings layer for backend selection, chunking, and deadlines.

Settings come from a key-value mapping (the application's settings store)
or from TRANSCRIPTION_* environment variables. The preferred engine is
resolved to an EngineKind here, at load time, not at call time.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from transcription_engine.models import EngineKind
from transcription_engine.utils.errors import NotConfiguredError

logger = logging.getLogger(__name__)

DEFAULT_PENDING_JOBS_PATH = os.path.join(
    os.path.expanduser("~"), ".transcription_engine", "pending_jobs.json"
)

# Mapping key -> environment variable
_ENV_KEYS: dict[str, str] = {
    "preferredEngine": "TRANSCRIPTION_ENGINE",
    "maxChunkDuration": "TRANSCRIPTION_MAX_CHUNK_DURATION",
    "maxTotalDuration": "TRANSCRIPTION_MAX_TOTAL_DURATION",
    "chunkOverlap": "TRANSCRIPTION_CHUNK_OVERLAP",
    "maxChunks": "TRANSCRIPTION_MAX_CHUNKS",
    "chunkCooldown": "TRANSCRIPTION_CHUNK_COOLDOWN",
    "wholeFileTimeout": "TRANSCRIPTION_WHOLE_FILE_TIMEOUT",
    "chunkTimeout": "TRANSCRIPTION_CHUNK_TIMEOUT",
    "exportTimeout": "TRANSCRIPTION_EXPORT_TIMEOUT",
    "maxTranscriptionTime": "TRANSCRIPTION_REQUEST_TIMEOUT",
    "pollInterval": "TRANSCRIPTION_POLL_INTERVAL",
    "maxJobWait": "TRANSCRIPTION_MAX_JOB_WAIT",
    "pendingJobsPath": "TRANSCRIPTION_PENDING_JOBS_PATH",
    "whisperModel": "LOCAL_WHISPER_MODEL",
    "whisperDevice": "LOCAL_WHISPER_DEVICE",
    "whisperComputeType": "LOCAL_WHISPER_COMPUTE_TYPE",
    "language": "TRANSCRIPTION_LANGUAGE",
    "enableWhisper": "WHISPER_SERVER_ENABLED",
    "whisperServerURL": "WHISPER_SERVER_URL",
    "whisperPort": "WHISPER_SERVER_PORT",
    "openAIAPIKey": "OPENAI_API_KEY",
    "openAIModel": "OPENAI_TRANSCRIBE_MODEL",
    "openAIBaseURL": "OPENAI_BASE_URL",
    "speechmaticsAPIKey": "SPEECHMATICS_API_KEY",
    "speechmaticsBaseURL": "SPEECHMATICS_BASE_URL",
    "enableAWSTranscribe": "AWS_TRANSCRIBE_ENABLED",
    "awsRegion": "AWS_REGION",
    "awsAccessKeyId": "AWS_ACCESS_KEY_ID",
    "awsSecretAccessKey": "AWS_SECRET_ACCESS_KEY",
    "awsBucketName": "AWS_TRANSCRIBE_BUCKET",
}


@dataclass
class LocalWhisperSettings:
    model: str = "small"
    device: str | None = None
    compute_type: str | None = None


@dataclass
class WhisperServerSettings:
    enabled: bool = False
    server_url: str = "localhost"
    port: int = 9000

    @property
    def base_url(self) -> str:
        url = self.server_url.rstrip("/")
        if not url.startswith(("http://", "https://")):
            url = f"http://{url}"
        return f"{url}:{self.port}"


@dataclass
class OpenAISettings:
    api_key: str = ""
    model: str = "gpt-4o-mini-transcribe"
    base_url: str = "https://api.openai.com/v1"


@dataclass
class SpeechmaticsSettings:
    api_key: str = ""
    base_url: str = "https://asr.api.speechmatics.com/v2"


@dataclass
class AWSTranscribeSettings:
    enabled: bool = False
    region: str = "us-east-1"
    access_key_id: str = ""
    secret_access_key: str = ""
    bucket_name: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(
            self.enabled
            and self.access_key_id
            and self.secret_access_key
            and self.bucket_name
        )


@dataclass
class EngineSettings:
    """All tunables consumed by the router, planner, executor and tracker.

    Durations are in seconds.
    """

    preferred_engine: EngineKind | None = None
    max_chunk_duration: float = 300.0
    max_total_duration: float = 3600.0
    chunk_overlap: float = 2.0
    max_chunks: int = 20
    chunk_cooldown: float = 2.0
    whole_file_timeout: float = 300.0
    chunk_timeout: float = 180.0
    export_timeout: float = 120.0
    request_timeout: float = 3600.0
    poll_interval: float = 30.0
    max_job_wait: float = 3600.0
    pending_jobs_path: str = DEFAULT_PENDING_JOBS_PATH
    language: str = "en"
    local_whisper: LocalWhisperSettings = field(default_factory=LocalWhisperSettings)
    whisper_server: WhisperServerSettings = field(
        default_factory=WhisperServerSettings
    )
    openai: OpenAISettings = field(default_factory=OpenAISettings)
    speechmatics: SpeechmaticsSettings = field(default_factory=SpeechmaticsSettings)
    aws_transcribe: AWSTranscribeSettings = field(
        default_factory=AWSTranscribeSettings
    )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> EngineSettings:
        """Build settings from a settings-store mapping.

        Zero, negative or unparsable numeric values fall back to defaults,
        matching how an unset numeric preference reads back as zero.

        Raises:
            NotConfiguredError: If ``preferredEngine`` names no known engine.
        """
        defaults = cls()
        try:
            preferred = EngineKind.parse(data.get("preferredEngine"))
        except ValueError as exc:
            raise NotConfiguredError(
                str(exc), engine=str(data.get("preferredEngine"))
            ) from exc

        whisper_port = _positive_int(data.get("whisperPort"), 0)

        return cls(
            preferred_engine=preferred,
            max_chunk_duration=_positive(
                data.get("maxChunkDuration"), defaults.max_chunk_duration
            ),
            max_total_duration=_positive(
                data.get("maxTotalDuration"), defaults.max_total_duration
            ),
            chunk_overlap=_non_negative(
                data.get("chunkOverlap"), defaults.chunk_overlap
            ),
            max_chunks=_positive_int(data.get("maxChunks"), defaults.max_chunks),
            chunk_cooldown=_non_negative(
                data.get("chunkCooldown"), defaults.chunk_cooldown
            ),
            whole_file_timeout=_positive(
                data.get("wholeFileTimeout"), defaults.whole_file_timeout
            ),
            chunk_timeout=_positive(data.get("chunkTimeout"), defaults.chunk_timeout),
            export_timeout=_positive(
                data.get("exportTimeout"), defaults.export_timeout
            ),
            request_timeout=_positive(
                data.get("maxTranscriptionTime"), defaults.request_timeout
            ),
            poll_interval=_positive(data.get("pollInterval"), defaults.poll_interval),
            max_job_wait=_positive(data.get("maxJobWait"), defaults.max_job_wait),
            pending_jobs_path=data.get("pendingJobsPath")
            or defaults.pending_jobs_path,
            language=data.get("language") or defaults.language,
            local_whisper=LocalWhisperSettings(
                model=data.get("whisperModel") or "small",
                device=data.get("whisperDevice") or None,
                compute_type=data.get("whisperComputeType") or None,
            ),
            whisper_server=WhisperServerSettings(
                enabled=_flag(data.get("enableWhisper")),
                server_url=data.get("whisperServerURL") or "localhost",
                port=whisper_port or 9000,
            ),
            openai=OpenAISettings(
                api_key=data.get("openAIAPIKey") or "",
                model=data.get("openAIModel") or "gpt-4o-mini-transcribe",
                base_url=(
                    data.get("openAIBaseURL") or "https://api.openai.com/v1"
                ).rstrip("/"),
            ),
            speechmatics=SpeechmaticsSettings(
                api_key=data.get("speechmaticsAPIKey") or "",
                base_url=data.get("speechmaticsBaseURL")
                or "https://asr.api.speechmatics.com/v2",
            ),
            aws_transcribe=AWSTranscribeSettings(
                enabled=_flag(data.get("enableAWSTranscribe")),
                region=data.get("awsRegion") or "us-east-1",
                access_key_id=data.get("awsAccessKeyId") or "",
                secret_access_key=data.get("awsSecretAccessKey") or "",
                bucket_name=data.get("awsBucketName") or "",
            ),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineSettings:
        """Build settings from TRANSCRIPTION_* and backend environment variables."""
        environ = os.environ if environ is None else environ
        data = {
            key: environ[env_name]
            for key, env_name in _ENV_KEYS.items()
            if env_name in environ
        }
        return cls.from_mapping(data)


def _positive(value: Any, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _non_negative(value: Any, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


def _positive_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)

"""Data models shared across the transcription engine.

Transcripts are expressed in the coordinate space of the original recording;
per-chunk results are shifted into it by the aggregator.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class EngineKind(str, Enum):
    """Closed set of supported recognition backends."""

    LOCAL_WHISPER = "local_whisper"
    WHISPER_SERVER = "whisper_server"
    OPENAI = "openai"
    SPEECHMATICS = "speechmatics"
    AWS_TRANSCRIBE = "aws_transcribe"
    NOT_CONFIGURED = "not_configured"

    @classmethod
    def parse(cls, value: str | EngineKind | None) -> EngineKind | None:
        """Resolve a configured engine name; ``None``/"auto" means unset.

        Raises:
            ValueError: If the name is not a supported engine.
        """
        if value is None or isinstance(value, EngineKind):
            return value
        normalized = value.strip().lower().replace("-", "_")
        if normalized in ("", "auto"):
            return None
        try:
            return cls(normalized)
        except ValueError:
            available = ", ".join(kind.value for kind in cls)
            raise ValueError(
                f"Unknown transcription engine: '{value}'. Available: {available}"
            ) from None


DEFAULT_ENGINE = EngineKind.LOCAL_WHISPER


@dataclass(frozen=True)
class TranscriptionRequest:
    """A caller's request for a transcript of one recording."""

    source_path: str
    duration: float
    engine: EngineKind | None = None
    display_name: str = ""

    def __post_init__(self) -> None:
        if not self.display_name:
            object.__setattr__(
                self, "display_name", os.path.basename(self.source_path)
            )


@dataclass
class TranscriptSegment:
    """A span of recognized text attributed to one speaker."""

    speaker: str
    text: str
    start_time: float
    end_time: float

    def shifted(self, offset: float) -> TranscriptSegment:
        """Return a copy moved ``offset`` seconds later in the timeline."""
        return replace(
            self,
            start_time=self.start_time + offset,
            end_time=self.end_time + offset,
        )


@dataclass
class TranscriptionResult:
    """Terminal artifact of one transcription request."""

    full_text: str
    segments: list[TranscriptSegment] = field(default_factory=list)
    processing_time: float = 0.0
    chunk_count: int = 1
    success: bool = True
    error: str | None = None
    engine: str = ""


@dataclass
class TranscriptionJob:
    """A job accepted by an asynchronous backend and tracked until done."""

    job_id: str
    engine: str
    source_path: str
    display_name: str
    submitted_at: datetime

    def age(self, now: datetime | None = None) -> float:
        """Seconds elapsed since submission."""
        now = now or datetime.now(UTC)
        return (now - self.submitted_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "engine": self.engine,
            "source_path": self.source_path,
            "display_name": self.display_name,
            "submitted_at": self.submitted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TranscriptionJob:
        """Deserialize a persisted job record.

        Raises:
            ValueError: If required fields are missing or malformed.
        """
        job_id = data.get("job_id")
        if not job_id or not isinstance(job_id, str):
            raise ValueError("Missing or invalid 'job_id' in job record")

        submitted_raw = data.get("submitted_at", "")
        try:
            submitted_at = datetime.fromisoformat(submitted_raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"Invalid 'submitted_at' ISO 8601 format: '{submitted_raw}'"
            ) from exc
        if submitted_at.tzinfo is None:
            submitted_at = submitted_at.replace(tzinfo=UTC)

        source_path = data.get("source_path", "")
        return cls(
            job_id=job_id,
            engine=data.get("engine", ""),
            source_path=source_path,
            display_name=data.get("display_name") or os.path.basename(source_path),
            submitted_at=submitted_at,
        )


@dataclass
class EngineAvailability:
    """Whether an engine can serve a request right now, and why not."""

    engine: EngineKind
    available: bool
    reason: str = ""


@dataclass
class TranscriptionProgress:
    """Progress of a chunked request, reported after each chunk."""

    current_chunk: int
    total_chunks: int
    processed_duration: float
    total_duration: float
    current_text: str = ""
    is_complete: bool = False

    @property
    def percentage(self) -> float:
        if self.total_chunks <= 0:
            return 0.0
        return self.current_chunk / self.total_chunks

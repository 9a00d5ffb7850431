"""Per-request metrics.

TranscriptionMetrics holds one record per transcribe() call. StageTimer
measures the routing, extraction and recognition stages, and
log_transcription_metrics() writes the record as a JSON line to stdout.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime


@dataclass
class TranscriptionMetrics:
    """Everything measured for one transcription request."""

    source: str
    engine: str = ""
    status: str = "started"
    audio_duration_seconds: float = 0.0
    chunk_count: int = 0
    processing_wall_time_seconds: float = 0.0
    routing_duration_seconds: float = 0.0
    extraction_duration_seconds: float = 0.0
    recognition_duration_seconds: float = 0.0
    job_id: str | None = None
    error_stage: str | None = None
    error_message: str | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)

    def record(self, timer: StageTimer) -> None:
        """Add a finished stage's duration to its running total."""
        self.stage_timings[timer.stage_name] = (
            self.stage_timings.get(timer.stage_name, 0.0) + timer.duration_seconds
        )
        attr = f"{timer.stage_name}_duration_seconds"
        if hasattr(self, attr):
            setattr(self, attr, getattr(self, attr) + timer.duration_seconds)


class StageTimer:
    """Context manager recording the wall-clock duration of a stage.

    Usage:
        with StageTimer("recognition") as timer:
            await executor.run(path)
        metrics.record(timer)
    """

    def __init__(self, stage_name: str) -> None:
        self.stage_name = stage_name
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.duration_seconds = time.monotonic() - self._mono_start
        self.end_time = datetime.now(UTC)


def log_transcription_metrics(metrics: TranscriptionMetrics) -> None:
    """Emit the metrics record as one JSON line on stdout."""
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "transcription_completion",
        **asdict(metrics),
    }
    print(json.dumps(entry))

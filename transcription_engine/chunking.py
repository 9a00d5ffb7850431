"""Chunk planning for recordings too long to recognize in one piece.

A plan is a finite sequence of overlapping time windows covering
``[0, duration)``. Every step advances by at least MIN_ADVANCEMENT seconds,
so planning terminates for any overlap setting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from transcription_engine.utils.errors import TooLargeError

logger = logging.getLogger(__name__)

MAX_SAFE_CHUNK_DURATION = 300.0
MAX_OVERLAP_RATIO = 0.1
MIN_ADVANCEMENT = 1.0


@dataclass(frozen=True)
class ChunkWindow:
    index: int
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class ChunkPlan:
    """Ordered windows plus the effective chunk length and overlap."""

    windows: tuple[ChunkWindow, ...]
    chunk_duration: float
    overlap: float

    def __len__(self) -> int:
        return len(self.windows)

    def __iter__(self):
        return iter(self.windows)


def needs_chunking(duration: float, chunk_duration: float) -> bool:
    return duration > chunk_duration


def plan_chunks(duration: float, chunk_duration: float, overlap: float) -> ChunkPlan:
    """Split ``duration`` seconds into overlapping windows.

    The chunk length is capped at MAX_SAFE_CHUNK_DURATION and the overlap at
    MAX_OVERLAP_RATIO of the effective chunk length.

    Raises:
        ValueError: If duration or chunk_duration is not positive.
    """
    if duration <= 0:
        raise ValueError(f"duration must be positive, got {duration}")
    if chunk_duration <= 0:
        raise ValueError(f"chunk_duration must be positive, got {chunk_duration}")

    effective_chunk = min(chunk_duration, MAX_SAFE_CHUNK_DURATION)
    effective_overlap = max(0.0, min(overlap, effective_chunk * MAX_OVERLAP_RATIO))
    if effective_overlap != overlap:
        logger.info(
            "Clamped chunk overlap from %.1fs to %.1fs", overlap, effective_overlap
        )

    windows: list[ChunkWindow] = []
    current = 0.0
    while current < duration:
        end = min(current + effective_chunk, duration)
        windows.append(ChunkWindow(index=len(windows), start=current, end=end))
        if end >= duration:
            break
        current = max(current + MIN_ADVANCEMENT, end - effective_overlap)

    logger.info(
        "Planned %d chunks for %.1fs (chunk=%.1fs, overlap=%.1fs)",
        len(windows),
        duration,
        effective_chunk,
        effective_overlap,
    )
    return ChunkPlan(
        windows=tuple(windows),
        chunk_duration=effective_chunk,
        overlap=effective_overlap,
    )


def check_chunk_limit(
    plan: ChunkPlan, max_chunks: int, duration: float, max_duration: float
) -> None:
    """Reject plans with more windows than ``max_chunks``.

    Raises:
        TooLargeError: If the plan exceeds the chunk cap.
    """
    if len(plan) > max_chunks:
        raise TooLargeError(
            duration,
            max_duration,
            message=(
                f"Recording needs {len(plan)} chunks of "
                f"{plan.chunk_duration:.0f}s, max {max_chunks} chunks"
            ),
        )

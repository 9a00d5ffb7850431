"""Merging per-chunk results into one transcript.

Chunk texts are joined in plan order with a single space. Segment times are
shifted by each chunk's start offset so they refer to the original
recording. Overlapping windows are not de-duplicated.
"""

from __future__ import annotations

from collections.abc import Sequence

from transcription_engine.models import TranscriptionResult, TranscriptSegment
from transcription_engine.utils.errors import ChunkFailedError


def aggregate_results(
    results: Sequence[TranscriptionResult],
    offsets: Sequence[float],
    processing_time: float | None = None,
) -> TranscriptionResult:
    """Combine ordered chunk results.

    Args:
        results: One result per chunk, in plan order.
        offsets: Start offset of each chunk in the source recording.
        processing_time: Wall-clock time to report; defaults to the sum of
            the per-chunk processing times.

    Raises:
        ValueError: If results and offsets differ in length.
    """
    if len(results) != len(offsets):
        raise ValueError(
            f"Got {len(results)} results for {len(offsets)} chunk offsets"
        )

    texts = [r.full_text.strip() for r in results if r.full_text.strip()]
    segments: list[TranscriptSegment] = []
    for result, offset in zip(results, offsets):
        segments.extend(seg.shifted(offset) for seg in result.segments)

    if processing_time is None:
        processing_time = sum(r.processing_time for r in results)

    engine = results[0].engine if results else ""
    return TranscriptionResult(
        full_text=" ".join(texts),
        segments=segments,
        processing_time=processing_time,
        chunk_count=len(results),
        engine=engine,
    )


class ChunkAccumulator:
    """Collects chunk results as they complete."""

    def __init__(self) -> None:
        self._results: list[TranscriptionResult] = []
        self._offsets: list[float] = []

    def __len__(self) -> int:
        return len(self._results)

    def add(self, result: TranscriptionResult, offset: float) -> None:
        self._results.append(result)
        self._offsets.append(offset)

    def fail(self, index: int, cause: BaseException) -> ChunkFailedError:
        """Build the error that aborts the request; ``index`` is 0-based."""
        return ChunkFailedError(index + 1, cause)

    @property
    def text_so_far(self) -> str:
        return " ".join(
            r.full_text.strip() for r in self._results if r.full_text.strip()
        )

    def result(self, processing_time: float | None = None) -> TranscriptionResult:
        return aggregate_results(self._results, self._offsets, processing_time)

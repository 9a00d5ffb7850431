"""Duration probing and time-window export using ffmpeg.

Each exported Segment is a standalone 16kHz mono 16-bit PCM WAV file that
can be recognized without access to the source recording. Segments own
their temporary file and remove it on cleanup().
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass

from transcription_engine.utils.deadline import race_deadline
from transcription_engine.utils.errors import (
    SegmentExtractionError,
    SourceNotFoundError,
)

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000
TARGET_CHANNELS = 1
FFPROBE_TIMEOUT_SECONDS = 10.0
DEFAULT_EXPORT_TIMEOUT = 120.0


@dataclass
class Segment:
    """A time window of the source exported to its own file."""

    path: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    def cleanup(self) -> None:
        """Remove the temporary file. Safe to call more than once."""
        _remove_quietly(self.path)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove temporary file %s: %s", path, exc)


def _require_binary(name: str, source: str) -> str:
    binary = shutil.which(name)
    if binary is None:
        raise SegmentExtractionError(f"{name} binary not found on PATH", source=source)
    return binary


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
        await process.wait()


async def probe_duration(path: str) -> float:
    """Read the duration of a media file with ffprobe.

    Raises:
        SourceNotFoundError: If the file does not exist.
        SegmentExtractionError: If ffprobe is missing or cannot read it.
    """
    if not os.path.exists(path):
        raise SourceNotFoundError(path)

    ffprobe = _require_binary("ffprobe", path)
    process = await asyncio.create_subprocess_exec(
        ffprobe,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        path,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await race_deadline(
        process.communicate(),
        FFPROBE_TIMEOUT_SECONDS,
        label="ffprobe",
        on_timeout=lambda: _kill(process),
    )
    if process.returncode != 0:
        raise SegmentExtractionError(
            f"Audio file is corrupt or unreadable (ffprobe): "
            f"{stderr.decode(errors='replace').strip() or 'unknown error'}",
            source=path,
        )
    try:
        return float(stdout.decode().strip())
    except ValueError as exc:
        raise SegmentExtractionError(
            "ffprobe reported no duration", source=path
        ) from exc


async def extract_segment(
    source: str,
    start: float,
    end: float,
    output_dir: str | None = None,
    timeout: float = DEFAULT_EXPORT_TIMEOUT,
) -> Segment:
    """Export ``[start, end)`` of ``source`` to a new WAV file.

    Args:
        source: Path to the source recording.
        start: Window start offset in seconds.
        end: Window end offset in seconds.
        output_dir: Directory for the file; the system temp dir by default.
        timeout: Export deadline in seconds.

    Returns:
        The exported Segment. The caller owns its cleanup.

    Raises:
        SourceNotFoundError: If the source does not exist.
        SegmentExtractionError: If ffmpeg fails or produces nothing.
        TranscriptionTimeoutError: If the export misses its deadline. The
            ffmpeg process is killed and the partial file removed.
    """
    if not os.path.exists(source):
        raise SourceNotFoundError(source)
    if end <= start:
        raise SegmentExtractionError(
            f"Empty time window [{start:.2f}, {end:.2f})", source=source
        )

    ffmpeg = _require_binary("ffmpeg", source)
    output_dir = output_dir or tempfile.gettempdir()
    os.makedirs(output_dir, exist_ok=True)
    output_path = os.path.join(output_dir, f"chunk_{uuid.uuid4().hex}.wav")

    process = await asyncio.create_subprocess_exec(
        ffmpeg,
        "-y",
        "-v", "error",
        "-ss", f"{start:.3f}",
        "-t", f"{end - start:.3f}",
        "-i", source,
        "-ac", str(TARGET_CHANNELS),
        "-ar", str(TARGET_SAMPLE_RATE),
        "-c:a", "pcm_s16le",
        "-f", "wav",
        output_path,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )

    async def abort() -> None:
        await _kill(process)
        _remove_quietly(output_path)

    try:
        _, stderr = await race_deadline(
            process.communicate(),
            timeout,
            label=f"Export of {start:.1f}-{end:.1f}s",
            on_timeout=abort,
        )
    except asyncio.CancelledError:
        await abort()
        raise

    if process.returncode != 0:
        _remove_quietly(output_path)
        raise SegmentExtractionError(
            f"ffmpeg export failed: {stderr.decode(errors='replace').strip()}",
            source=source,
        )
    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        _remove_quietly(output_path)
        raise SegmentExtractionError(
            f"ffmpeg produced no output file: {output_path}", source=source
        )

    logger.debug("Exported %.1f-%.1fs of %s to %s", start, end, source, output_path)
    return Segment(path=output_path, start=start, end=end)

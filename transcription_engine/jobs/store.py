"""Durable store for jobs submitted to asynchronous backends.

Jobs are kept as a JSON array in a single file. Writes go to a temporary
file in the same directory and are moved into place with os.replace, so a
crash mid-write leaves the previous contents intact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile

from transcription_engine.models import TranscriptionJob

logger = logging.getLogger(__name__)


class PendingJobStore:
    """JSON-file persistence for pending TranscriptionJobs."""

    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> list[TranscriptionJob]:
        """Read persisted jobs. A missing or unreadable file yields none."""
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                records = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable pending job store %s: %s", self.path, exc)
            return []
        if not isinstance(records, list):
            logger.warning("Ignoring malformed pending job store %s", self.path)
            return []

        jobs: list[TranscriptionJob] = []
        for record in records:
            try:
                jobs.append(TranscriptionJob.from_dict(record))
            except (ValueError, AttributeError) as exc:
                logger.warning("Skipping invalid pending job record: %s", exc)
        logger.info("Loaded %d pending jobs from %s", len(jobs), self.path)
        return jobs

    def save(self, jobs: list[TranscriptionJob]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".pending_jobs.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([job.to_dict() for job in jobs], f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

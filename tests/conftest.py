import os

import pytest

from transcription_engine.config import EngineSettings

_ENV_PREFIXES = (
    "TRANSCRIPTION_",
    "WHISPER_SERVER_",
    "LOCAL_WHISPER_",
    "OPENAI_",
    "SPEECHMATICS_",
    "AWS_",
)


@pytest.fixture
def settings(tmp_path) -> EngineSettings:
    """Settings with short deadlines and no cooldown."""
    return EngineSettings(
        max_chunk_duration=300.0,
        max_total_duration=3600.0,
        chunk_overlap=2.0,
        max_chunks=20,
        chunk_cooldown=0.0,
        whole_file_timeout=5.0,
        chunk_timeout=5.0,
        export_timeout=5.0,
        request_timeout=60.0,
        poll_interval=0.01,
        max_job_wait=3600.0,
        pending_jobs_path=str(tmp_path / "pending_jobs.json"),
    )


@pytest.fixture
def audio_file(tmp_path) -> str:
    """A placeholder recording on disk."""
    path = tmp_path / "meeting.m4a"
    path.write_bytes(b"\x00" * 1024)
    return str(path)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch) -> None:
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)

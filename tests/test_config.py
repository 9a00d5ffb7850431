"""Tests for settings loading."""

import os

import pytest

from transcription_engine.config import (
    DEFAULT_PENDING_JOBS_PATH,
    EngineSettings,
    WhisperServerSettings,
)
from transcription_engine.models import EngineKind
from transcription_engine.utils.errors import NotConfiguredError


class TestDefaults:
    def test_empty_mapping(self) -> None:
        settings = EngineSettings.from_mapping({})

        assert settings.preferred_engine is None
        assert settings.max_chunk_duration == 300.0
        assert settings.max_total_duration == 3600.0
        assert settings.chunk_overlap == 2.0
        assert settings.max_chunks == 20
        assert settings.chunk_cooldown == 2.0
        assert settings.request_timeout == 3600.0
        assert settings.pending_jobs_path == DEFAULT_PENDING_JOBS_PATH
        assert settings.whisper_server.enabled is False
        assert settings.aws_transcribe.is_complete is False

    @pytest.mark.parametrize("value", [0, -5, "", "abc", None])
    def test_non_positive_falls_back(self, value) -> None:
        settings = EngineSettings.from_mapping(
            {"maxChunkDuration": value, "maxChunks": value, "chunkTimeout": value}
        )
        assert settings.max_chunk_duration == 300.0
        assert settings.max_chunks == 20
        assert settings.chunk_timeout == 180.0

    def test_zero_cooldown_and_overlap_allowed(self) -> None:
        settings = EngineSettings.from_mapping({"chunkCooldown": 0, "chunkOverlap": "0"})
        assert settings.chunk_cooldown == 0.0
        assert settings.chunk_overlap == 0.0


class TestFromMapping:
    def test_values_parsed(self) -> None:
        settings = EngineSettings.from_mapping(
            {
                "preferredEngine": "openai",
                "maxChunkDuration": "240",
                "maxChunks": "10",
                "maxTranscriptionTime": 1800,
                "openAIAPIKey": "sk-test",
                "openAIBaseURL": "http://proxy:8080/v1/",
            }
        )

        assert settings.preferred_engine is EngineKind.OPENAI
        assert settings.max_chunk_duration == 240.0
        assert settings.max_chunks == 10
        assert settings.request_timeout == 1800.0
        assert settings.openai.api_key == "sk-test"
        assert settings.openai.base_url == "http://proxy:8080/v1"

    def test_unknown_engine(self) -> None:
        with pytest.raises(NotConfiguredError, match="deepgram"):
            EngineSettings.from_mapping({"preferredEngine": "deepgram"})

    @pytest.mark.parametrize(
        ("raw", "enabled"),
        [("true", True), ("1", True), ("On", True), ("no", False), (True, True), (0, False)],
    )
    def test_flags(self, raw, enabled: bool) -> None:
        settings = EngineSettings.from_mapping({"enableWhisper": raw})
        assert settings.whisper_server.enabled is enabled

    def test_aws_complete(self) -> None:
        settings = EngineSettings.from_mapping(
            {
                "enableAWSTranscribe": "yes",
                "awsAccessKeyId": "AKIA",
                "awsSecretAccessKey": "secret",
                "awsBucketName": "recordings",
            }
        )
        assert settings.aws_transcribe.is_complete is True


class TestWhisperServerSettings:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("localhost", "http://localhost:9000"),
            ("https://gpu.internal/", "https://gpu.internal:9000"),
        ],
    )
    def test_base_url(self, url: str, expected: str) -> None:
        assert WhisperServerSettings(server_url=url).base_url == expected


class TestFromEnv:
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        jobs_path = os.path.join(str(tmp_path), "jobs.json")
        monkeypatch.setenv("TRANSCRIPTION_ENGINE", "speechmatics")
        monkeypatch.setenv("TRANSCRIPTION_CHUNK_OVERLAP", "3.5")
        monkeypatch.setenv("TRANSCRIPTION_PENDING_JOBS_PATH", jobs_path)
        monkeypatch.setenv("SPEECHMATICS_API_KEY", "sm-key")

        settings = EngineSettings.from_env()

        assert settings.preferred_engine is EngineKind.SPEECHMATICS
        assert settings.chunk_overlap == 3.5
        assert settings.pending_jobs_path == jobs_path
        assert settings.speechmatics.api_key == "sm-key"

    def test_explicit_mapping(self) -> None:
        settings = EngineSettings.from_env({"WHISPER_SERVER_PORT": "9200"})
        assert settings.whisper_server.port == 9200

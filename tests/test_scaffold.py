"""Tests for package layout, structured logger and the error hierarchy."""

import io
import json
import logging

from transcription_engine.observability.logger import StructuredJsonFormatter
from transcription_engine.utils.errors import (
    AlreadyInProgressError,
    AsyncBackendFailedError,
    BackendUnavailableError,
    ChunkFailedError,
    NoSpeechDetectedError,
    NotConfiguredError,
    RecognitionFailedError,
    RecoverableRecognitionError,
    SegmentExtractionError,
    SourceNotFoundError,
    TooLargeError,
    TranscriptionCancelledError,
    TranscriptionError,
    TranscriptionTimeoutError,
)


class TestModuleImports:
    """Verify all package modules are importable."""

    def test_subpackage_imports(self) -> None:
        import transcription_engine
        import transcription_engine.asr
        import transcription_engine.audio
        import transcription_engine.jobs
        import transcription_engine.observability
        import transcription_engine.utils

        assert transcription_engine.__version__
        assert transcription_engine.asr.create_engine is not None


class TestErrors:
    """Hierarchy and human-readable messages."""

    def test_all_inherit_from_transcription_error(self) -> None:
        errors = [
            SourceNotFoundError("/x.m4a"),
            NotConfiguredError("missing key", engine="openai"),
            BackendUnavailableError("down"),
            NoSpeechDetectedError(),
            SegmentExtractionError("ffmpeg died", source="/x.m4a"),
            RecognitionFailedError("bad", provider="openai"),
            RecoverableRecognitionError("busy"),
            ChunkFailedError(1, RuntimeError("x")),
            TranscriptionTimeoutError(seconds=5.0),
            TooLargeError(7200.0, 3600.0),
            AsyncBackendFailedError("rejected"),
            AlreadyInProgressError(),
            TranscriptionCancelledError(),
        ]
        for error in errors:
            assert isinstance(error, TranscriptionError), type(error).__name__
            assert str(error)

    def test_job_prefix(self) -> None:
        error = AsyncBackendFailedError("Job was rejected", job_id="job-7")
        assert str(error) == "[job=job-7] Job was rejected"

    def test_no_prefix_without_job(self) -> None:
        assert str(TranscriptionError("plain")) == "plain"

    def test_recoverable_is_recognition_failure(self) -> None:
        assert issubclass(RecoverableRecognitionError, RecognitionFailedError)

    def test_source_not_found_message(self) -> None:
        error = SourceNotFoundError("/recordings/a.m4a")
        assert error.path == "/recordings/a.m4a"
        assert "Audio file not found" in str(error)

    def test_chunk_failure_message(self) -> None:
        error = ChunkFailedError(3, TranscriptionTimeoutError("timed out"))
        assert str(error) == "Failed to process chunk 3: timed out"

    def test_too_large_in_minutes(self) -> None:
        error = TooLargeError(5400.0, 3600.0)
        assert "90 minutes" in str(error)
        assert "max 60 minutes" in str(error)


def _json_logger(name: str) -> tuple[logging.Logger, io.StringIO]:
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredJsonFormatter())
    logger = logging.getLogger(name)
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, stream


class TestStructuredLogger:
    """JSON log line format."""

    def test_output_is_valid_json(self) -> None:
        logger, stream = _json_logger("test.json_output")
        logger.info("test message")

        parsed = json.loads(stream.getvalue().strip())

        assert parsed["message"] == "test message"
        assert parsed["severity"] == "INFO"
        assert parsed["logger"] == "test.json_output"

    def test_extra_fields(self) -> None:
        logger, stream = _json_logger("test.extra")
        logger.info(
            "chunk done",
            extra={"job_id": "job-1", "engine": "openai", "chunk_index": 2},
        )

        parsed = json.loads(stream.getvalue().strip())
        assert parsed["job_id"] == "job-1"
        assert parsed["engine"] == "openai"
        assert parsed["chunk_index"] == 2

    def test_timestamp_format(self) -> None:
        logger, stream = _json_logger("test.timestamp")
        logger.warning("check format")

        timestamp = json.loads(stream.getvalue().strip())["timestamp"]
        assert timestamp.endswith("Z")
        assert "T" in timestamp

    def test_exception_included(self) -> None:
        logger, stream = _json_logger("test.exception")
        try:
            raise RecognitionFailedError("decoder crashed")
        except RecognitionFailedError:
            logger.exception("recognition failed")

        parsed = json.loads(stream.getvalue().strip())
        assert parsed["exception"] == "decoder crashed"
        assert parsed["severity"] == "ERROR"

    def test_formatter_omits_unset_extras(self) -> None:
        record = logging.LogRecord(
            "x", logging.INFO, __file__, 1, "plain", None, None
        )
        parsed = json.loads(StructuredJsonFormatter().format(record))
        assert "job_id" not in parsed
        assert "exception" not in parsed

"""Tests for the OpenAI transcription engine."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from transcription_engine.asr.interface import EventType
from transcription_engine.asr.openai import MAX_UPLOAD_BYTES, OpenAITranscribeEngine
from transcription_engine.executor import RecognitionExecutor
from transcription_engine.utils.errors import (
    BackendUnavailableError,
    NotConfiguredError,
    RecognitionFailedError,
    RecoverableRecognitionError,
)


def _json(status_code: int, payload: dict) -> httpx.Response:
    return httpx.Response(status_code, json=payload)


def _engine(handler, model: str = "gpt-4o-mini-transcribe") -> OpenAITranscribeEngine:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAITranscribeEngine(
        api_key="sk-test", model=model, base_url="https://mock-openai/v1", client=client
    )


@pytest.fixture
def audio_path(tmp_path) -> str:
    path = tmp_path / "chunk.wav"
    path.write_bytes(b"RIFF fake")
    return str(path)


@pytest.fixture(autouse=True)
def no_backoff():
    with patch("transcription_engine.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestConstruction:
    def test_requires_api_key(self) -> None:
        with pytest.raises(NotConfiguredError):
            OpenAITranscribeEngine(api_key="")

    def test_rejects_unknown_model(self) -> None:
        with pytest.raises(NotConfiguredError, match="Unsupported"):
            OpenAITranscribeEngine(api_key="sk-test", model="gpt-3.5-turbo")


class TestIsAvailable:
    async def test_models_endpoint_ok(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return _json(200, {"data": []})

        assert await _engine(handler).is_available()
        assert requests[0].url.path == "/v1/models"
        assert requests[0].headers["authorization"] == "Bearer sk-test"

    async def test_invalid_key(self) -> None:
        engine = _engine(lambda r: _json(401, {"error": {"message": "bad key"}}))

        assert not await engine.is_available()

    async def test_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        assert not await _engine(handler).is_available()


class TestRecognize:
    """One request per file, one terminal event."""

    async def test_text_only_model(self, audio_path) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return _json(200, {"text": " Good morning everyone. "})

        events = [e async for e in _engine(handler).recognize(audio_path)]

        assert [e.type for e in events] == [EventType.FINAL]
        result = events[0].result
        assert result.full_text == "Good morning everyone."
        assert len(result.segments) == 1
        assert result.engine == "openai"
        body = requests[0].content.decode("utf-8", errors="replace")
        assert "gpt-4o-mini-transcribe" in body
        assert 'name="response_format"\r\n\r\njson' in body

    async def test_whisper_segments(self, audio_path) -> None:
        payload = {
            "text": "one two",
            "segments": [
                {"start": 0.0, "end": 1.2, "text": " one"},
                {"start": 1.2, "end": 2.0, "text": " two"},
            ],
        }
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return _json(200, payload)

        events = [e async for e in _engine(handler, model="whisper-1").recognize(audio_path)]

        segments = events[0].result.segments
        assert [(s.start_time, s.end_time, s.text) for s in segments] == [
            (0.0, 1.2, "one"),
            (1.2, 2.0, "two"),
        ]
        assert "verbose_json" in requests[0].content.decode("utf-8", errors="replace")

    async def test_transient_errors_retried(self, audio_path, no_backoff) -> None:
        responses = [_json(503, {}), _json(200, {"text": "after retry"})]

        events = [
            e async for e in _engine(lambda r: responses.pop(0)).recognize(audio_path)
        ]

        assert events[0].result.full_text == "after retry"
        assert no_backoff.await_count == 1

    async def test_api_error_is_fatal(self, audio_path) -> None:
        engine = _engine(
            lambda r: _json(400, {"error": {"message": "Audio file is too short"}})
        )

        events = [e async for e in engine.recognize(audio_path)]

        assert events[0].type is EventType.FATAL_ERROR
        assert isinstance(events[0].error, RecognitionFailedError)
        assert "Audio file is too short" in str(events[0].error)

    async def test_exhausted_retries_reported_as_recoverable(self, audio_path) -> None:
        events = [e async for e in _engine(lambda r: _json(429, {})).recognize(audio_path)]

        assert [e.type for e in events] == [
            EventType.RECOVERABLE_ERROR,
            EventType.RECOVERABLE_ERROR,
            EventType.FATAL_ERROR,
        ]
        assert isinstance(events[0].error, RecoverableRecognitionError)
        assert "after 3 attempts" in str(events[-1].error)

    async def test_oversized_file(self, tmp_path) -> None:
        big = tmp_path / "big.wav"
        with open(big, "wb") as f:
            f.truncate(MAX_UPLOAD_BYTES + 1)
        calls = []
        engine = _engine(lambda r: calls.append(r) or _json(200, {"text": "x"}))

        events = [e async for e in engine.recognize(str(big))]

        assert events[0].type is EventType.FATAL_ERROR
        assert "upload limit" in str(events[0].error)
        assert calls == []

    async def test_transport_failure_is_recoverable(self, audio_path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        events = [e async for e in _engine(handler).recognize(audio_path)]

        assert events[0].type is EventType.RECOVERABLE_ERROR
        assert events[-1].type is EventType.FATAL_ERROR
        assert "slow" in str(events[-1].error)


class TestExecutorIntegration:
    """Rate limiting is absorbed while the key still validates."""

    async def test_rate_limit_absorbed_while_available(self, audio_path) -> None:
        # one full round of retries is rate limited, the next round succeeds
        transcriptions = [_json(429, {})] * 4 + [_json(200, {"text": "eventually"})]

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/models"):
                return _json(200, {"data": []})
            return transcriptions.pop(0)

        result = await RecognitionExecutor(_engine(handler), 5.0).run(audio_path)

        assert result.full_text == "eventually"

    async def test_rate_limit_with_revoked_key(self, audio_path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/models"):
                return _json(401, {"error": {"message": "revoked"}})
            return _json(429, {})

        with pytest.raises(BackendUnavailableError, match="openai became unavailable"):
            await RecognitionExecutor(_engine(handler), 5.0).run(audio_path)

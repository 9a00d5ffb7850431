"""Tests for the recognition executor and its single-shot latch."""

import asyncio

import pytest

from fakes import FakeEngine, make_result
from transcription_engine.asr.interface import RecognitionEvent
from transcription_engine.audio.media import Segment
from transcription_engine.executor import RecognitionExecutor, ResultLatch
from transcription_engine.utils.errors import (
    BackendUnavailableError,
    NoSpeechDetectedError,
    RecognitionFailedError,
    RecoverableRecognitionError,
    TranscriptionTimeoutError,
)


class TestResultLatch:
    async def test_first_delivery_wins(self) -> None:
        latch = ResultLatch()

        assert latch.deliver_result(make_result("first")) is True
        assert latch.deliver_result(make_result("second")) is False
        assert latch.deliver_error(RuntimeError("late")) is False
        assert (await latch.wait()).full_text == "first"

    async def test_error_delivery(self) -> None:
        latch = ResultLatch()
        latch.deliver_error(RecognitionFailedError("nope"))

        assert latch.is_set
        with pytest.raises(RecognitionFailedError):
            await latch.wait()


class TestRecognitionExecutor:
    """Event handling, deadlines and segment cleanup."""

    async def test_final_result_returned(self) -> None:
        engine = FakeEngine()
        executor = RecognitionExecutor(engine, timeout=1.0)

        result = await executor.run("/audio/a.wav")

        assert result.full_text == "hello world"
        assert engine.calls == ["/audio/a.wav"]

    async def test_partials_ignored(self) -> None:
        engine = FakeEngine(
            scripts=[
                [
                    RecognitionEvent.partial(make_result("hel")),
                    RecognitionEvent.partial(make_result("hello")),
                    RecognitionEvent.final(make_result("hello there")),
                ]
            ]
        )

        result = await RecognitionExecutor(engine, 1.0).run("/a.wav")

        assert result.full_text == "hello there"

    async def test_recoverable_error_suppressed_while_available(self) -> None:
        engine = FakeEngine(
            scripts=[
                [
                    RecognitionEvent.recoverable(RecoverableRecognitionError("busy")),
                    RecognitionEvent.final(make_result("recovered")),
                ]
            ]
        )

        result = await RecognitionExecutor(engine, 1.0).run("/a.wav")

        assert result.full_text == "recovered"

    async def test_recoverable_error_when_unavailable(self) -> None:
        engine = FakeEngine(
            scripts=[
                [
                    RecognitionEvent.recoverable(RecoverableRecognitionError("busy")),
                    RecognitionEvent.final(make_result("never")),
                ]
            ],
            available=False,
        )

        with pytest.raises(BackendUnavailableError):
            await RecognitionExecutor(engine, 1.0).run("/a.wav")

    async def test_fatal_error(self) -> None:
        engine = FakeEngine(scripts=[[RecognitionEvent.fatal(ValueError("decoder"))]])

        with pytest.raises(RecognitionFailedError, match="decoder"):
            await RecognitionExecutor(engine, 1.0).run("/a.wav")

    async def test_fatal_transcription_error_passed_through(self) -> None:
        error = BackendUnavailableError("model missing")
        engine = FakeEngine(scripts=[[RecognitionEvent.fatal(error)]])

        with pytest.raises(BackendUnavailableError) as exc_info:
            await RecognitionExecutor(engine, 1.0).run("/a.wav")

        assert exc_info.value is error

    async def test_empty_final_is_no_speech(self) -> None:
        engine = FakeEngine(scripts=[[RecognitionEvent.final(make_result("   "))]])

        with pytest.raises(NoSpeechDetectedError):
            await RecognitionExecutor(engine, 1.0).run("/a.wav")

    async def test_stream_without_final(self) -> None:
        engine = FakeEngine(scripts=[[RecognitionEvent.partial(make_result("half"))]])

        with pytest.raises(RecognitionFailedError, match="without a final result"):
            await RecognitionExecutor(engine, 1.0).run("/a.wav")

    async def test_events_after_final_dropped(self) -> None:
        engine = FakeEngine(
            scripts=[
                [
                    RecognitionEvent.final(make_result("kept")),
                    RecognitionEvent.fatal(RuntimeError("late failure")),
                ]
            ]
        )

        result = await RecognitionExecutor(engine, 1.0).run("/a.wav")

        assert result.full_text == "kept"

    async def test_timeout(self) -> None:
        engine = FakeEngine(delay=1.0)

        with pytest.raises(TranscriptionTimeoutError):
            await RecognitionExecutor(engine, timeout=0.02).run("/a.wav")

    async def test_per_call_timeout_override(self) -> None:
        engine = FakeEngine(delay=0.05)

        result = await RecognitionExecutor(engine, timeout=0.01).run(
            "/a.wav", timeout=1.0
        )

        assert result.full_text == "hello world"

    async def test_calls_serialized_per_engine(self) -> None:
        engine = FakeEngine(delay=0.02)
        executor = RecognitionExecutor(engine, 1.0)
        active = 0
        peak = 0
        original = engine.recognize

        async def tracking(audio_path):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                async for event in original(audio_path):
                    yield event
            finally:
                active -= 1

        engine.recognize = tracking

        await asyncio.gather(executor.run("/a.wav"), executor.run("/b.wav"))

        assert peak == 1
        assert engine.calls == ["/a.wav", "/b.wav"]

    async def test_run_segment_cleans_up_on_success(self, tmp_path) -> None:
        path = tmp_path / "chunk.wav"
        path.write_bytes(b"RIFF")
        segment = Segment(path=str(path), start=0.0, end=1.0)

        await RecognitionExecutor(FakeEngine(), 1.0).run_segment(segment)

        assert not path.exists()

    async def test_run_segment_cleans_up_on_failure(self, tmp_path) -> None:
        path = tmp_path / "chunk.wav"
        path.write_bytes(b"RIFF")
        segment = Segment(path=str(path), start=0.0, end=1.0)
        engine = FakeEngine(scripts=[[RecognitionEvent.fatal(RuntimeError("x"))]])

        with pytest.raises(RecognitionFailedError):
            await RecognitionExecutor(engine, 1.0).run_segment(segment)

        assert not path.exists()

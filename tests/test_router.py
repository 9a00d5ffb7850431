"""Tests for engine selection and fallback."""

import pytest

from fakes import EngineFactory, FakeEngine, FakeJobEngine, FakeServerEngine
from transcription_engine.jobs.store import PendingJobStore
from transcription_engine.jobs.tracker import AsyncJobTracker
from transcription_engine.models import EngineKind
from transcription_engine.router import EngineRouter
from transcription_engine.utils.errors import BackendUnavailableError


class TestAvailability:
    async def test_available(self, settings) -> None:
        router = EngineRouter(settings, engine_factory=EngineFactory(local_whisper=FakeEngine()))

        status = await router.availability(EngineKind.LOCAL_WHISPER)

        assert status.available
        assert status.engine is EngineKind.LOCAL_WHISPER

    async def test_not_configured(self, settings) -> None:
        router = EngineRouter(settings, engine_factory=EngineFactory())

        status = await router.availability(EngineKind.OPENAI)

        assert not status.available
        assert "not configured" in status.reason

    async def test_unreachable(self, settings) -> None:
        router = EngineRouter(
            settings,
            engine_factory=EngineFactory(whisper_server=FakeServerEngine(available=False)),
        )

        status = await router.availability(EngineKind.WHISPER_SERVER)

        assert not status.available
        assert status.reason == "unreachable"

    async def test_recomputed_each_call(self, settings) -> None:
        server = FakeServerEngine(available=False)
        router = EngineRouter(settings, engine_factory=EngineFactory(whisper_server=server))

        assert not (await router.availability(EngineKind.WHISPER_SERVER)).available
        server.available = True
        assert (await router.availability(EngineKind.WHISPER_SERVER)).available


class TestSelect:
    """Preference, fallback and tracker side effects."""

    async def test_requested_engine(self, settings) -> None:
        server = FakeServerEngine()
        router = EngineRouter(
            settings,
            engine_factory=EngineFactory(local_whisper=FakeEngine(), whisper_server=server),
        )

        assert await router.select(EngineKind.WHISPER_SERVER) is server

    async def test_configured_preference(self, settings) -> None:
        server = FakeServerEngine()
        settings.preferred_engine = EngineKind.WHISPER_SERVER
        router = EngineRouter(
            settings,
            engine_factory=EngineFactory(local_whisper=FakeEngine(), whisper_server=server),
        )

        assert await router.select() is server

    async def test_default_when_nothing_preferred(self, settings) -> None:
        local = FakeEngine()
        router = EngineRouter(settings, engine_factory=EngineFactory(local_whisper=local))

        assert await router.select() is local

    async def test_falls_back_when_unreachable(self, settings) -> None:
        local = FakeEngine()
        router = EngineRouter(
            settings,
            engine_factory=EngineFactory(
                local_whisper=local, whisper_server=FakeServerEngine(available=False)
            ),
        )

        assert await router.select(EngineKind.WHISPER_SERVER) is local

    async def test_falls_back_when_not_configured(self, settings) -> None:
        local = FakeEngine()
        router = EngineRouter(settings, engine_factory=EngineFactory(local_whisper=local))

        assert await router.select(EngineKind.OPENAI) is local

    async def test_not_configured_kind_maps_to_default(self, settings) -> None:
        local = FakeEngine()
        router = EngineRouter(settings, engine_factory=EngineFactory(local_whisper=local))

        assert await router.select(EngineKind.NOT_CONFIGURED) is local

    async def test_default_unusable(self, settings) -> None:
        router = EngineRouter(
            settings, engine_factory=EngineFactory(local_whisper=FakeEngine(available=False))
        )

        with pytest.raises(BackendUnavailableError):
            await router.select(EngineKind.OPENAI)

    async def test_engine_instances_reused(self, settings) -> None:
        factory = EngineFactory(local_whisper=FakeEngine())
        router = EngineRouter(settings, engine_factory=factory)

        await router.select()
        await router.select()

        assert factory.created == [EngineKind.LOCAL_WHISPER]

    async def test_async_engine_attached_to_tracker(self, settings, tmp_path) -> None:
        job_engine = FakeJobEngine()
        tracker = AsyncJobTracker(PendingJobStore(str(tmp_path / "jobs.json")))
        router = EngineRouter(
            settings,
            tracker=tracker,
            engine_factory=EngineFactory(local_whisper=FakeEngine(), speechmatics=job_engine),
        )

        await router.select(EngineKind.SPEECHMATICS)

        assert tracker.engine is job_engine

    async def test_switching_to_sync_engine_clears_tracker(self, settings, tmp_path) -> None:
        job_engine = FakeJobEngine()
        tracker = AsyncJobTracker(
            PendingJobStore(str(tmp_path / "jobs.json")), engine=job_engine,
            poll_interval=3600.0,
        )
        await tracker.submit("/recordings/a.m4a")
        assert tracker.is_polling
        router = EngineRouter(
            settings,
            tracker=tracker,
            engine_factory=EngineFactory(local_whisper=FakeEngine(), speechmatics=job_engine),
        )

        await router.select(EngineKind.LOCAL_WHISPER)

        assert not tracker.is_polling
        assert tracker.pending_jobs == []

    async def test_aclose_closes_engines(self, settings) -> None:
        local = FakeEngine()
        router = EngineRouter(settings, engine_factory=EngineFactory(local_whisper=local))
        await router.select()

        await router.aclose()

        assert local.closed

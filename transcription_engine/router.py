"""Engine selection with fallback to the on-device backend.

Availability is recomputed on every call. A preferred backend that is not
configured or not reachable is skipped with a warning; routing only fails
when the default backend cannot be used either.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from transcription_engine.asr.interface import AsyncJobEngine, RecognitionEngine
from transcription_engine.asr.registry import create_engine
from transcription_engine.config import EngineSettings
from transcription_engine.jobs.tracker import AsyncJobTracker
from transcription_engine.models import DEFAULT_ENGINE, EngineAvailability, EngineKind
from transcription_engine.utils.errors import (
    BackendUnavailableError,
    NotConfiguredError,
)

logger = logging.getLogger(__name__)

EngineFactory = Callable[[EngineKind, EngineSettings], RecognitionEngine]


class EngineRouter:
    """Resolves a requested engine to a usable RecognitionEngine.

    Constructed engines are cached per kind so stateful handles and
    per-engine locks survive across requests.
    """

    def __init__(
        self,
        settings: EngineSettings,
        tracker: AsyncJobTracker | None = None,
        engine_factory: EngineFactory = create_engine,
    ) -> None:
        self.settings = settings
        self.tracker = tracker
        self._engine_factory = engine_factory
        self._engines: dict[EngineKind, RecognitionEngine] = {}

    def _engine(self, kind: EngineKind) -> RecognitionEngine:
        engine = self._engines.get(kind)
        if engine is None:
            engine = self._engine_factory(kind, self.settings)
            self._engines[kind] = engine
        return engine

    async def availability(self, kind: EngineKind) -> EngineAvailability:
        if kind is EngineKind.NOT_CONFIGURED:
            return EngineAvailability(kind, False, "not configured")
        try:
            engine = self._engine(kind)
        except NotConfiguredError as exc:
            return EngineAvailability(kind, False, f"not configured: {exc}")
        if not await engine.is_available():
            return EngineAvailability(kind, False, "unreachable")
        return EngineAvailability(kind, True)

    async def select(self, requested: EngineKind | None = None) -> RecognitionEngine:
        """Pick the engine for a request.

        Args:
            requested: Explicit engine, or None for the configured preference.

        Raises:
            BackendUnavailableError: If neither the chosen engine nor the
                default on-device engine can be used.
        """
        kind = requested or self.settings.preferred_engine or DEFAULT_ENGINE
        if kind is EngineKind.NOT_CONFIGURED:
            kind = DEFAULT_ENGINE

        status = await self.availability(kind)
        if not status.available and kind is not DEFAULT_ENGINE:
            logger.warning(
                "%s unavailable (%s), falling back to %s",
                kind.value,
                status.reason,
                DEFAULT_ENGINE.value,
            )
            kind = DEFAULT_ENGINE
            status = await self.availability(kind)
        if not status.available:
            raise BackendUnavailableError(
                f"No transcription engine available ({kind.value}: {status.reason})",
                engine=kind.value,
            )

        engine = self._engines[kind]
        await self._sync_tracker(engine)
        logger.info("Selected engine %s", engine.name)
        return engine

    async def _sync_tracker(self, engine: RecognitionEngine) -> None:
        if self.tracker is None:
            return
        if isinstance(engine, AsyncJobEngine):
            self.tracker.attach(engine)
            return
        self.tracker.stop()
        await self.tracker.clear()

    async def aclose(self) -> None:
        for engine in self._engines.values():
            await engine.aclose()
        self._engines.clear()

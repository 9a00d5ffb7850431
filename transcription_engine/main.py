"""Command-line entry point.

    transcription-engine transcribe PATH [--engine KIND] [--wait]
    transcription-engine check-jobs

Settings are read from the environment (see config.EngineSettings). Logs go
to stderr as structured JSON; transcripts and metrics go to stdout.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys

from transcription_engine.asr.interface import AsyncJobEngine
from transcription_engine.asr.registry import create_engine
from transcription_engine.config import EngineSettings
from transcription_engine.jobs.store import PendingJobStore
from transcription_engine.jobs.tracker import AsyncJobTracker
from transcription_engine.models import (
    EngineKind,
    TranscriptionJob,
    TranscriptionProgress,
    TranscriptionResult,
)
from transcription_engine.observability.logger import StructuredJsonFormatter
from transcription_engine.orchestrator import TranscriptionOrchestrator
from transcription_engine.router import EngineRouter
from transcription_engine.utils.errors import (
    TranscriptionCancelledError,
    TranscriptionError,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def _setup_logging() -> None:
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)


def _print_result(result: TranscriptionResult) -> None:
    print(result.full_text)


def _print_job(job: TranscriptionJob) -> None:
    print(json.dumps(job.to_dict()))


def _log_progress(progress: TranscriptionProgress) -> None:
    logger.info(
        "Progress %d/%d (%.0f%%)",
        progress.current_chunk,
        progress.total_chunks,
        progress.percentage * 100,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="transcription-engine")
    commands = parser.add_subparsers(dest="command", required=True)

    transcribe = commands.add_parser("transcribe", help="Transcribe a recording")
    transcribe.add_argument("path", help="Audio file to transcribe")
    transcribe.add_argument(
        "--engine",
        choices=[k.value for k in EngineKind if k is not EngineKind.NOT_CONFIGURED],
        default=None,
        help="Engine to use (default: configured preference)",
    )
    transcribe.add_argument(
        "--wait",
        action="store_true",
        help="Wait for asynchronous jobs to complete",
    )

    commands.add_parser("check-jobs", help="Poll pending asynchronous jobs once")
    return parser


async def _transcribe(args: argparse.Namespace, settings: EngineSettings) -> int:
    tracker = AsyncJobTracker(
        PendingJobStore(settings.pending_jobs_path),
        poll_interval=settings.poll_interval,
        max_wait=settings.max_job_wait,
    )
    router = EngineRouter(settings, tracker=tracker)
    orchestrator = TranscriptionOrchestrator(
        settings, router, tracker=tracker, progress_callback=_log_progress
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, orchestrator.cancel)

    try:
        outcome = await orchestrator.transcribe(args.path, args.engine)
        if isinstance(outcome, TranscriptionJob):
            _print_job(outcome)
            if not args.wait:
                return EXIT_OK
            outcome = await tracker.wait_for(outcome.job_id, settings.max_job_wait)
        _print_result(outcome)
        return EXIT_OK
    except TranscriptionCancelledError:
        logger.warning("Transcription cancelled")
        return EXIT_CANCELLED
    except TranscriptionError as exc:
        logger.error("Transcription failed: %s", exc, extra={"error": str(exc)})
        return EXIT_FAILED
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        tracker.stop()
        await router.aclose()


async def _check_jobs(settings: EngineSettings) -> int:
    """Run one poll cycle for each engine that owns pending jobs."""
    store = PendingJobStore(settings.pending_jobs_path)
    tracker = AsyncJobTracker(
        store, poll_interval=settings.poll_interval, max_wait=settings.max_job_wait
    )
    tracker.on_completed = lambda result, job: print(
        json.dumps({"job": job.to_dict(), "text": result.full_text})
    )

    owners = sorted({job.engine for job in tracker.pending_jobs})
    if not owners:
        logger.info("No pending jobs")
        return EXIT_OK

    status = EXIT_OK
    for owner in owners:
        try:
            engine = create_engine(EngineKind(owner), settings)
        except (ValueError, TranscriptionError) as exc:
            logger.error("Cannot check jobs for %s: %s", owner, exc)
            status = EXIT_FAILED
            continue
        if not isinstance(engine, AsyncJobEngine):
            logger.error("Engine %s does not run asynchronous jobs", owner)
            status = EXIT_FAILED
            continue
        tracker.attach(engine)
        try:
            results = await tracker.check_for_completed_jobs()
        finally:
            await engine.aclose()
        logger.info("%d %s jobs completed", len(results), owner)
    return status


async def run(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = EngineSettings.from_env()
    except TranscriptionError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_FAILED

    if args.command == "transcribe":
        return await _transcribe(args, settings)
    return await _check_jobs(settings)


def main() -> None:
    _setup_logging()
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()

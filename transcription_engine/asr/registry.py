"""Recognition engine registry with settings-driven construction.

Maps EngineKind values to engine classes. Use create_engine() to build an
engine from EngineSettings; each backend reads its own section.
"""

from __future__ import annotations

from transcription_engine.asr.aws_transcribe import AWSTranscribeEngine
from transcription_engine.asr.interface import RecognitionEngine
from transcription_engine.asr.local_whisper import LocalWhisperEngine
from transcription_engine.asr.openai import OpenAITranscribeEngine
from transcription_engine.asr.speechmatics import SpeechmaticsEngine
from transcription_engine.asr.whisper_server import WhisperServerEngine
from transcription_engine.config import EngineSettings
from transcription_engine.models import EngineKind
from transcription_engine.utils.errors import NotConfiguredError

ENGINES: dict[EngineKind, type[RecognitionEngine]] = {
    EngineKind.LOCAL_WHISPER: LocalWhisperEngine,
    EngineKind.WHISPER_SERVER: WhisperServerEngine,
    EngineKind.OPENAI: OpenAITranscribeEngine,
    EngineKind.SPEECHMATICS: SpeechmaticsEngine,
    EngineKind.AWS_TRANSCRIBE: AWSTranscribeEngine,
}


def create_engine(kind: EngineKind, settings: EngineSettings) -> RecognitionEngine:
    """Create an engine instance for ``kind`` from its settings section.

    Args:
        kind: Engine to build.
        settings: Loaded engine settings.

    Returns:
        A constructed RecognitionEngine.

    Raises:
        NotConfiguredError: If the kind is not registered, is disabled, or
            its constructor rejects the configured credentials.
    """
    engine_cls = ENGINES.get(kind)
    if not engine_cls:
        available = ", ".join(sorted(k.value for k in ENGINES))
        raise NotConfiguredError(
            f"Unknown engine: '{kind.value}'. Available: {available}",
            engine=kind.value,
        )

    if kind is EngineKind.LOCAL_WHISPER:
        local = settings.local_whisper
        return LocalWhisperEngine(
            model_name=local.model,
            device=local.device,
            compute_type=local.compute_type,
            language=settings.language,
        )
    if kind is EngineKind.WHISPER_SERVER:
        if not settings.whisper_server.enabled:
            raise NotConfiguredError(
                "Whisper server is not enabled", engine=kind.value
            )
        return WhisperServerEngine(
            base_url=settings.whisper_server.base_url,
            language=settings.language,
        )
    if kind is EngineKind.OPENAI:
        return OpenAITranscribeEngine(
            api_key=settings.openai.api_key,
            model=settings.openai.model,
            base_url=settings.openai.base_url,
            language=settings.language,
        )
    if kind is EngineKind.SPEECHMATICS:
        return SpeechmaticsEngine(
            api_key=settings.speechmatics.api_key,
            base_url=settings.speechmatics.base_url,
            language=settings.language,
        )

    aws = settings.aws_transcribe
    if not aws.enabled:
        raise NotConfiguredError("AWS Transcribe is not enabled", engine=kind.value)
    return AWSTranscribeEngine(
        region=aws.region,
        access_key_id=aws.access_key_id,
        secret_access_key=aws.secret_access_key,
        bucket_name=aws.bucket_name,
        language_code=_aws_language_code(settings.language),
    )


def _aws_language_code(language: str) -> str:
    if "-" in language:
        return language
    return {"en": "en-US", "de": "de-DE", "fr": "fr-FR", "es": "es-US"}.get(
        language, "en-US"
    )

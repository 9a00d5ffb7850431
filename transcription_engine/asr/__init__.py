"""Recognition backends."""

from transcription_engine.asr.registry import create_engine

__all__ = ["create_engine"]

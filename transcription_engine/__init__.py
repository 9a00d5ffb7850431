"""Chunked transcription orchestration across interchangeable backends."""

__version__ = "0.1.0"

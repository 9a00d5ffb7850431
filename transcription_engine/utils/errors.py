"""Exception hierarchy for the transcription engine.

All exceptions inherit from TranscriptionError, enabling targeted handling
at request boundaries while preserving specific failure context.
"""


class TranscriptionError(Exception):
    """Base exception for all transcription errors."""

    def __init__(self, message: str, job_id: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.job_id:
            return f"[job={self.job_id}] {super().__str__()}"
        return super().__str__()


class SourceNotFoundError(TranscriptionError):
    """Raised when the source recording does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Audio file not found: {path}")


class NotConfiguredError(TranscriptionError):
    """Raised when an engine is selected but its settings are incomplete."""

    def __init__(self, message: str, engine: str | None = None) -> None:
        self.engine = engine
        super().__init__(message)


class BackendUnavailableError(TranscriptionError):
    """Raised when no usable recognition backend is available."""

    def __init__(self, message: str, engine: str | None = None) -> None:
        self.engine = engine
        super().__init__(message)


class NoSpeechDetectedError(TranscriptionError):
    """Raised when recognition finished but produced no text."""

    def __init__(self, message: str = "No speech detected in the audio file") -> None:
        super().__init__(message)


class SegmentExtractionError(TranscriptionError):
    """Raised when a time window cannot be exported from the source."""

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)


class RecognitionFailedError(TranscriptionError):
    """Raised when a backend reports a fatal recognition failure."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        provider: str | None = None,
    ) -> None:
        self.provider = provider
        super().__init__(message, job_id)


class RecoverableRecognitionError(RecognitionFailedError):
    """A transient backend hiccup (rate limit, busy service).

    Absorbed by the recognition executor and retried on HTTP submission.
    """


class ChunkFailedError(TranscriptionError):
    """Raised when one chunk of a split request fails.

    ``index`` is 1-based, matching the progress reported to callers.
    """

    def __init__(self, index: int, cause: BaseException) -> None:
        self.index = index
        self.cause = cause
        super().__init__(f"Failed to process chunk {index}: {cause}")


class TranscriptionTimeoutError(TranscriptionError):
    """Raised when a unit of work exceeds its deadline."""

    def __init__(
        self,
        message: str = "Transcription timed out",
        seconds: float | None = None,
        job_id: str | None = None,
    ) -> None:
        self.seconds = seconds
        super().__init__(message, job_id)


class TooLargeError(TranscriptionError):
    """Raised when a recording exceeds the processing limits."""

    def __init__(
        self, duration: float, max_duration: float, message: str | None = None
    ) -> None:
        self.duration = duration
        self.max_duration = max_duration
        super().__init__(
            message
            or f"File too large for processing ({int(duration // 60)} minutes, "
            f"max {int(max_duration // 60)} minutes)"
        )


class AsyncBackendFailedError(TranscriptionError):
    """Raised when a remote asynchronous job fails or is rejected."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        provider: str | None = None,
    ) -> None:
        self.provider = provider
        super().__init__(message, job_id)


class AlreadyInProgressError(TranscriptionError):
    """Raised when a second request arrives while one is executing."""

    def __init__(self) -> None:
        super().__init__("A transcription is already in progress")


class TranscriptionCancelledError(TranscriptionError):
    """Raised from transcribe() after cancel() stopped the request."""

    def __init__(self) -> None:
        super().__init__("Transcription was cancelled")

"""Exception types raised by tabscribe components."""

from typing import Optional


class TabscribeError(Exception):
    """Base class for all tabscribe errors."""


class SessionStateError(TabscribeError):
    """Requested transition does not match the current session state."""


class CaptureError(TabscribeError):
    """Capture source could not be acquired or produced no audio."""


class TranscriptionError(TabscribeError):
    """Base class for failures on the transcription path."""


class NetworkError(TranscriptionError):
    """A remote protocol step failed at the transport or HTTP level."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(f"[{step}] {message}")


class ProtocolError(TranscriptionError):
    """A remote response was malformed or missed a required field."""

    def __init__(self, step: str, message: str, preview: Optional[str] = None):
        self.step = step
        self.preview = preview
        detail = f"[{step}] {message}"
        if preview is not None:
            detail += f" (body: {preview!r})"
        super().__init__(detail)


class TaskError(TranscriptionError):
    """The remote job reached a terminal failure status."""

    def __init__(self, status: str, code: Optional[str] = None, message: Optional[str] = None):
        self.status = status
        self.code = code
        self.message = message
        detail = f"Transcription task {status}"
        if code:
            detail += f" [{code}]"
        if message:
            detail += f": {message}"
        super().__init__(detail)


class PollTimeoutError(TranscriptionError, TimeoutError):
    """Polling gave up: attempts exhausted or the job stopped reporting status."""


class EngineError(TranscriptionError):
    """Local model failed to load or run."""

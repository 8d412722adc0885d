"""Services layer: session lifecycle and transcription orchestration."""

from .session_controller import SessionController
from .transcription_service import ProgressReporter, TranscriptionService

__all__ = [
    "SessionController",
    "ProgressReporter",
    "TranscriptionService",
]

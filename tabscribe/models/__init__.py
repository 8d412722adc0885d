"""Data models for the tabscribe application."""

from .transcription import (
    Segment,
    JobStatus,
    TranscriptionJob,
    TranscriptionRequest,
    TranscriptArtifact,
)
from .session import Session, SessionState, SessionStatus
from .events import (
    AudioEvent,
    StatusChanged,
    TranscriptionProgress,
    TranscriptionComplete,
    TranscriptionFailed,
    KeepAlive,
)
from .commands import (
    StartCommand,
    PauseCommand,
    ResumeCommand,
    StopCommand,
    GetStatusCommand,
    CommandResult,
)

__all__ = [
    "Segment",
    "JobStatus",
    "TranscriptionJob",
    "TranscriptionRequest",
    "TranscriptArtifact",
    "Session",
    "SessionState",
    "SessionStatus",
    # Channel notifications
    "AudioEvent",
    "StatusChanged",
    "TranscriptionProgress",
    "TranscriptionComplete",
    "TranscriptionFailed",
    "KeepAlive",
    # Controller commands
    "StartCommand",
    "PauseCommand",
    "ResumeCommand",
    "StopCommand",
    "GetStatusCommand",
    "CommandResult",
]

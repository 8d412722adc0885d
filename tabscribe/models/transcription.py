"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


@dataclass
class Segment:
    """A recognized span of speech."""
    text: str
    start: float
    end: Optional[float] = None  # Backfilled with the recording duration when absent


class JobStatus(Enum):
    """Remote transcription task status."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["JobStatus"]:
        """Map a wire status to a JobStatus; unrecognised values count as PENDING."""
        if not value:
            return None
        try:
            return cls(value.upper())
        except ValueError:
            return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    JobStatus.SUCCEEDED,
    JobStatus.FAILED,
    JobStatus.CANCELED,
    JobStatus.EXPIRED,
    JobStatus.UNKNOWN,
})


@dataclass
class TranscriptionJob:
    """A submitted cloud transcription task."""
    task_id: str
    status: JobStatus = JobStatus.PENDING
    result_url: Optional[str] = None


@dataclass
class TranscriptionRequest:
    """Session metadata handed from the controller to the transcription service."""
    title: str
    source_url: str
    duration_seconds: float
    language: Optional[str] = None


@dataclass(frozen=True)
class TranscriptArtifact:
    """Finished transcript, ready for rendering and delivery."""
    title: str
    source_url: str
    duration_seconds: float
    language: str
    model: str
    generated_at: datetime
    segments: Tuple[Segment, ...] = field(default_factory=tuple)

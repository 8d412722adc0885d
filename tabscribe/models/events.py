"""Event models for capture chunks and channel notifications."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any


@dataclass
class AudioEvent:
    """Audio chunk event with metadata."""
    chunk_id: str
    audio_data: bytes
    timestamp: float  # Unix timestamp when chunk was captured
    sequence_number: int
    sample_rate: int = 16000
    channels: int = 1
    chunk_duration_ms: Optional[int] = None  # Duration of this chunk in milliseconds
    final: bool = False  # True for the flush chunk read on stop

    def __post_init__(self):
        """Calculate chunk duration if not provided."""
        if self.chunk_duration_ms is None and self.audio_data:
            # Calculate based on 16-bit audio (2 bytes per sample)
            bytes_per_second = self.sample_rate * self.channels * 2
            duration_seconds = len(self.audio_data) / bytes_per_second
            self.chunk_duration_ms = int(duration_seconds * 1000)


@dataclass
class StatusChanged:
    """Session state transition, with enough data to rebuild the state remotely."""
    state: str
    target_id: Optional[str] = None
    start_time: Optional[int] = None
    paused_elapsed_ms: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TranscriptionProgress:
    """Progress of the outstanding transcription job."""
    progress: int  # 0..100, never decreasing within a job
    status: str


@dataclass
class TranscriptionComplete:
    """Terminal success of a transcription job."""
    filename: str
    segment_count: int
    duration_seconds: float
    path: Optional[str] = None


@dataclass
class TranscriptionFailed:
    """Terminal failure of a transcription job."""
    message: str
    error_type: str = "TranscriptionError"


@dataclass
class KeepAlive:
    """Liveness ping emitted while a job is outstanding."""
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

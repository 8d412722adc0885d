"""Append-only audio buffer holding a whole recording."""

import logging
import threading
from typing import List

from ..models.events import AudioEvent

logger = logging.getLogger(__name__)


class AudioBuffer:
    """Ordered chunks of interleaved 16-bit PCM captured for one session."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1, sample_width: int = 2):
        """Initialize audio buffer.

        Args:
            sample_rate: Sample rate of the captured chunks
            channels: Number of interleaved channels
            sample_width: Bytes per sample (2 for 16-bit audio)
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.sample_width = sample_width

        # Thread-safe buffer; the capture thread appends, the controller reads
        self.chunks: List[bytes] = []
        self.lock = threading.Lock()
        self.total_bytes = 0

    def add_audio_chunk(self, audio_data: bytes) -> None:
        """Append a chunk to the buffer."""
        if not audio_data:
            return

        with self.lock:
            self.chunks.append(audio_data)
            self.total_bytes += len(audio_data)

    def on_audio_event(self, event: AudioEvent) -> None:
        """Capture callback: store the event's payload."""
        self.add_audio_chunk(event.audio_data)

    def to_blob(self) -> bytes:
        """Concatenate all chunks into one blob."""
        with self.lock:
            return b''.join(self.chunks)

    @property
    def duration_seconds(self) -> float:
        bytes_per_second = self.sample_rate * self.channels * self.sample_width
        return self.total_bytes / bytes_per_second if bytes_per_second else 0.0

    def __len__(self) -> int:
        return len(self.chunks)

    def clear(self) -> None:
        """Discard all buffered audio."""
        with self.lock:
            self.chunks.clear()
            self.total_bytes = 0
            logger.debug("Audio buffer cleared")

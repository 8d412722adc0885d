"""Abstract base classes for transcription backends."""

from abc import ABC, abstractmethod
from typing import Callable, List
import logging

import numpy as np

from ..models.transcription import Segment

logger = logging.getLogger(__name__)

# progress(percent, status_text)
ProgressCallback = Callable[[int, str], None]


class AbstractTranscriptionBackend(ABC):
    """Abstract base class for transcription backends."""

    def __init__(self, language: str = "zh"):
        """Initialize backend with language preference."""
        self.language = language

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Identifier of the recognition model, recorded in the transcript header."""

    @abstractmethod
    async def transcribe_audio(self, pcm: np.ndarray, on_progress: ProgressCallback) -> List[Segment]:
        """Transcribe a whole recording.

        Args:
            pcm: Mono float32 audio at 16 kHz
            on_progress: Called with (percent, status text) as work advances

        Returns:
            Raw recognizer segments, in order
        """

    def initialize(self) -> bool:
        """Initialize backend resources and verify configuration.

        Returns:
            True if initialization successful, False otherwise
        """
        return True

    def cleanup(self) -> None:
        """Clean up backend resources."""

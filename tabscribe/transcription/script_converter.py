"""Chinese script normalisation for recognizer output."""

import logging
from typing import List, Optional

import opencc

from ..models.transcription import Segment

logger = logging.getLogger(__name__)


class ScriptConverter:
    """Converts segment text to one canonical script (Traditional -> Simplified by default)."""

    def __init__(self, conversion: Optional[str] = "tw2s"):
        """Initialize script converter.

        Args:
            conversion: OpenCC conversion name (e.g. 'tw2s', 't2s'); None disables conversion
        """
        self.conversion = conversion
        self._converter = None

    def convert(self, text: str) -> str:
        if not self.conversion or not text:
            return text
        if self._converter is None:
            self._converter = opencc.OpenCC(self.conversion)
            logger.info(f"OpenCC converter loaded: {self.conversion}")
        return self._converter.convert(text)

    def convert_segments(self, segments: List[Segment]) -> List[Segment]:
        """Return new segments with converted text; timings are untouched."""
        return [Segment(text=self.convert(seg.text), start=seg.start, end=seg.end) for seg in segments]

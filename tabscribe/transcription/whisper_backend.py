"""Local speech recognition backend built on faster-whisper."""

import time
import asyncio
import logging
import threading
from typing import List, Optional

import numpy as np
from faster_whisper import WhisperModel

from .base import AbstractTranscriptionBackend, ProgressCallback
from ..audio.preprocessor import TARGET_SAMPLE_RATE
from ..errors import EngineError
from ..models.transcription import Segment

logger = logging.getLogger(__name__)

# Estimated-progress window while the model runs
PROGRESS_START = 20
PROGRESS_SPAN = 70
PROGRESS_TICK_SECONDS = 2.0


class WhisperBackend(AbstractTranscriptionBackend):
    """Offline recognizer used when no cloud credential is configured.

    The model is loaded once per backend and reused across recordings.
    """

    def __init__(self,
                 model_size: str = "small",
                 device: str = "auto",
                 compute_type: str = "int8",
                 language: str = "zh",
                 chunk_length_sec: int = 30,
                 stride_sec: int = 5,
                 no_repeat_ngram: int = 6,
                 repetition_penalty: float = 1.1,
                 download_root: Optional[str] = None):
        super().__init__(language)
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.chunk_length_sec = chunk_length_sec
        self.stride_sec = stride_sec
        self.no_repeat_ngram = no_repeat_ngram
        self.repetition_penalty = repetition_penalty
        self.download_root = download_root

        self._model: Optional[WhisperModel] = None
        self._load_lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "WhisperBackend":
        """Build a backend from the ``whisper`` config section."""
        return cls(
            model_size=config.get('whisper.model', "small"),
            device=config.get('whisper.device', "auto"),
            compute_type=config.get('whisper.compute_type', "int8"),
            language=config.get('whisper.language', "zh"),
            chunk_length_sec=config.get('whisper.chunk_length_seconds', 30),
            stride_sec=config.get('whisper.stride_seconds', 5),
            no_repeat_ngram=config.get('whisper.no_repeat_ngram_size', 6),
            repetition_penalty=config.get('whisper.repetition_penalty', 1.1),
        )

    @property
    def model_name(self) -> str:
        return f"faster-whisper-{self.model_size}"

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def load_model(self) -> WhisperModel:
        """Return the loaded model, loading it on first use.

        Concurrent callers share a single load. A failed load leaves nothing
        memoized, so the next call retries.
        """
        with self._load_lock:
            if self._model is not None:
                return self._model

            logger.info(f"Loading Whisper model '{self.model_size}' (device={self.device}, compute_type={self.compute_type})")
            start = time.time()
            try:
                model = WhisperModel(self.model_size,
                                     device=self.device,
                                     compute_type=self.compute_type,
                                     download_root=self.download_root)
            except Exception as e:
                logger.error(f"Failed to load Whisper model '{self.model_size}': {e}")
                raise EngineError(f"Failed to load Whisper model '{self.model_size}': {e}") from e

            self._model = model
            logger.info(f"Whisper model loaded in {time.time() - start:.1f}s")
            return model

    def initialize(self) -> bool:
        """Preload the model so the first recording does not pay for it."""
        try:
            self.load_model()
            return True
        except EngineError as e:
            logger.warning(f"Whisper preload failed, will retry on first use: {e}")
            return False

    def transcribe(self,
                   pcm: np.ndarray,
                   language_hint: Optional[str] = None,
                   chunk_length_sec: Optional[int] = None,
                   stride_sec: Optional[int] = None,
                   no_repeat_ngram: Optional[int] = None,
                   repetition_penalty: Optional[float] = None) -> List[Segment]:
        """Run the model over a whole recording (blocking).

        ``stride_sec`` is accepted for interface parity; faster-whisper windows
        audio by ``chunk_length`` and carries context itself.
        """
        chunk_length_sec = chunk_length_sec or self.chunk_length_sec
        stride_sec = stride_sec or self.stride_sec
        no_repeat_ngram = no_repeat_ngram if no_repeat_ngram is not None else self.no_repeat_ngram
        repetition_penalty = repetition_penalty or self.repetition_penalty

        model = self.load_model()
        logger.debug(f"Whisper transcribe: {len(pcm) / TARGET_SAMPLE_RATE:.1f}s audio, "
                     f"chunk={chunk_length_sec}s stride={stride_sec}s")
        try:
            raw_segments, info = model.transcribe(
                pcm,
                language=language_hint or None,
                task="transcribe",
                chunk_length=chunk_length_sec,
                no_repeat_ngram_size=no_repeat_ngram,
                repetition_penalty=repetition_penalty,
                condition_on_previous_text=False,
            )
            # raw_segments is lazy; decoding happens while iterating
            segments = [Segment(text=s.text, start=s.start, end=s.end) for s in raw_segments]
        except Exception as e:
            raise EngineError(f"Whisper transcription failed: {e}") from e

        logger.info(f"Whisper produced {len(segments)} segments (detected language: {info.language})")
        return segments

    async def _report_estimated_progress(self, audio_seconds: float, on_progress: ProgressCallback) -> None:
        estimated = max(audio_seconds * 0.5, 10.0)
        started = time.monotonic()
        while True:
            await asyncio.sleep(PROGRESS_TICK_SECONDS)
            ratio = min((time.monotonic() - started) / estimated, 0.95)
            on_progress(PROGRESS_START + round(ratio * PROGRESS_SPAN), "Transcribing locally...")

    async def transcribe_audio(self, pcm: np.ndarray, on_progress: ProgressCallback) -> List[Segment]:
        if not self.is_loaded:
            on_progress(10, f"Loading model {self.model_size}...")
        await asyncio.to_thread(self.load_model)

        on_progress(PROGRESS_START, "Transcribing locally...")
        ticker = asyncio.create_task(
            self._report_estimated_progress(len(pcm) / TARGET_SAMPLE_RATE, on_progress)
        )
        try:
            return await asyncio.to_thread(self.transcribe, pcm, self.language)
        finally:
            ticker.cancel()
            try:
                await ticker
            except asyncio.CancelledError:
                pass

"""Transcription orchestrator: turns a finished recording into a delivered transcript."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..audio.buffer import AudioBuffer
from ..audio.preprocessor import TARGET_SAMPLE_RATE, decode_and_resample
from ..config import TabscribeConfig
from ..errors import TranscriptionError
from ..models.events import KeepAlive, TranscriptionComplete, TranscriptionFailed, TranscriptionProgress
from ..models.transcription import Segment, TranscriptArtifact, TranscriptionRequest
from ..notifications import NotificationChannel
from ..output.markdown_generator import generate_markdown, sanitize_filename
from ..storage.file_manager import FileManager
from ..transcription.base import AbstractTranscriptionBackend
from ..transcription.dashscope_backend import DashScopeBackend
from ..transcription.hallucination_filter import filter_hallucinations
from ..transcription.script_converter import ScriptConverter
from ..transcription.whisper_backend import WhisperBackend

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Publishes progress for one job, clamped to 0..100 and never decreasing."""

    def __init__(self, channel: NotificationChannel):
        self.channel = channel
        self.last_progress = 0

    def report(self, progress: int, status: str) -> None:
        progress = max(self.last_progress, min(100, max(0, int(progress))))
        self.last_progress = progress
        logger.debug(f"Progress {progress}%: {status}")
        self.channel.publish(TranscriptionProgress(progress=progress, status=status))


class TranscriptionService:
    """Runs one transcription job at a time and reports it on the notification channel.

    The cloud backend is chosen whenever a DashScope credential is configured;
    otherwise the local Whisper backend is used. The local backend is created
    once and kept, so its model is only loaded once per process.
    """

    def __init__(self,
                 config: TabscribeConfig,
                 channel: NotificationChannel,
                 file_manager: FileManager,
                 cloud_backend_factory: Optional[Callable[[str], AbstractTranscriptionBackend]] = None,
                 local_backend: Optional[AbstractTranscriptionBackend] = None,
                 script_converter: Optional[ScriptConverter] = None,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        """Initialize transcription service.

        Args:
            config: Application configuration
            channel: Where progress, completion, errors and keepalives go
            file_manager: Delivery sink for finished transcripts
            cloud_backend_factory: Builds the cloud backend from an API key
            local_backend: Local backend instance (created from config when omitted)
            script_converter: Script normaliser applied to recognized text
            clock: Source of the transcript's generation timestamp
        """
        self.config = config
        self.channel = channel
        self.file_manager = file_manager
        self.cloud_backend_factory = cloud_backend_factory or (
            lambda api_key: DashScopeBackend.from_config(config, api_key)
        )
        self._local_backend = local_backend
        self.script_converter = script_converter or ScriptConverter(
            config.get('transcription.script_conversion', "tw2s")
        )
        self.clock = clock
        self.keepalive_interval = config.get('transcription.keepalive_interval_seconds', 25)
        self.is_running = False

    @property
    def local_backend(self) -> AbstractTranscriptionBackend:
        if self._local_backend is None:
            self._local_backend = WhisperBackend.from_config(self.config)
        return self._local_backend

    def select_backend(self) -> AbstractTranscriptionBackend:
        """Cloud backend when a credential is configured, local backend otherwise."""
        api_key = self.config.get_dashscope_api_key()
        if api_key:
            return self.cloud_backend_factory(api_key)
        return self.local_backend

    def preload_local_model(self) -> bool:
        """Load the local model ahead of the first recording."""
        return self.local_backend.initialize()

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval)
            self.channel.publish(KeepAlive(metadata={"source": "transcription"}))

    def build_artifact(self,
                       segments: List[Segment],
                       request: TranscriptionRequest,
                       duration_seconds: float,
                       backend: AbstractTranscriptionBackend) -> TranscriptArtifact:
        """Normalise script, drop hallucinations and wrap the result for rendering."""
        cleaned = filter_hallucinations(self.script_converter.convert_segments(segments))
        if not cleaned:
            logger.info("No speech recognized; writing an empty transcript")
            cleaned = [Segment(text="", start=0.0, end=duration_seconds)]

        return TranscriptArtifact(
            title=request.title,
            source_url=request.source_url,
            duration_seconds=duration_seconds,
            language=request.language or backend.language,
            model=backend.model_name,
            generated_at=self.clock(),
            segments=tuple(cleaned),
        )

    async def transcribe_recording(self,
                                   audio: AudioBuffer,
                                   request: TranscriptionRequest,
                                   release: Optional[Callable[[], None]] = None) -> TranscriptionComplete:
        """Transcribe a finished recording and deliver the Markdown transcript.

        Emits exactly one terminal notification (complete or error). The audio
        buffer is cleared and ``release`` is called whatever the outcome.

        Args:
            audio: The recording
            request: Title, source and duration of the session
            release: Releases the capture resources behind ``audio``

        Returns:
            The completion notification that was published

        Raises:
            TranscriptionError: a job is already running, or the job failed
        """
        if self.is_running:
            raise TranscriptionError("A transcription is already in progress")
        self.is_running = True

        reporter = ProgressReporter(self.channel)
        keepalive = asyncio.create_task(self._keepalive_loop())
        try:
            reporter.report(0, "Processing audio...")
            pcm = await asyncio.to_thread(
                decode_and_resample, audio.to_blob(), audio.sample_rate, audio.channels
            )
            duration = request.duration_seconds or len(pcm) / TARGET_SAMPLE_RATE

            backend = self.select_backend()
            logger.info(f"Transcribing {duration:.1f}s of audio with {backend.model_name}")
            reporter.report(5, f"Transcribing with {backend.model_name}...")
            segments = await backend.transcribe_audio(pcm, reporter.report)

            reporter.report(90, "Generating transcript...")
            artifact = self.build_artifact(segments, request, duration, backend)
            document = generate_markdown(artifact)
            path = self.file_manager.deliver(f"{sanitize_filename(request.title)}.md",
                                             document.encode("utf-8"))

            reporter.report(100, "Done")
            complete = TranscriptionComplete(
                filename=path.name,
                segment_count=len(artifact.segments),
                duration_seconds=duration,
                path=str(path),
            )
            self.channel.publish(complete)
            return complete

        except Exception as e:
            logger.error(f"Transcription failed: {e}", exc_info=True)
            self.channel.publish(TranscriptionFailed(message=str(e), error_type=type(e).__name__))
            raise

        finally:
            keepalive.cancel()
            try:
                await keepalive
            except asyncio.CancelledError:
                pass
            audio.clear()
            if release is not None:
                try:
                    release()
                except Exception as e:
                    logger.warning(f"Error releasing capture resources: {e}")
            self.is_running = False

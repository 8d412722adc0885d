"""Audio capture from an input device, buffered for whole-session transcription."""

import pyaudio
import time
import logging
from threading import Thread, Event, Lock
from typing import Optional, Callable, List, Dict, Any, Protocol
from datetime import datetime

from .buffer import AudioBuffer
from ..errors import CaptureError
from ..models.events import AudioEvent


logger = logging.getLogger(__name__)

DEFAULT_TARGET = "default"


class CaptureSource(Protocol):
    """What the session controller needs from a capture source."""

    on_target_lost: Optional[Callable[[str], None]]

    def start(self, target_id: str) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> AudioBuffer: ...

    def release(self) -> None: ...

    def describe_target(self, target_id: str) -> str: ...


class AudioCapture:
    """Continuous capture from one PyAudio input device into an AudioBuffer.

    Chunks are read at a fixed cadence (``chunk_seconds``) on a background
    thread. Pausing stops the stream so nothing is buffered until resume;
    stopping reads whatever is left in the device buffer as a final flush.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_seconds: float = 1.0,
        format: int = pyaudio.paInt16,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            sample_rate: Audio sample rate requested from the device
            channels: Number of audio channels
            chunk_seconds: Cadence at which chunks are delivered
            format: Audio format (16-bit signed int)
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_size = max(1, int(sample_rate * chunk_seconds))
        self.format = format
        self.on_target_lost: Optional[Callable[[str], None]] = None

        # Recording thread management
        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.pause_event = Event()
        self.is_recording = False
        self.target_id: Optional[str] = None
        self.buffer: Optional[AudioBuffer] = None

        # Statistics tracking
        self.start_time: Optional[datetime] = None
        self.total_chunks = 0

        # PyAudio resources, shared with the recording thread
        self._resource_lock = Lock()
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream: Optional[pyaudio.Stream] = None

    @staticmethod
    def _device_index(target_id: str) -> Optional[int]:
        if target_id in (None, "", DEFAULT_TARGET):
            return None
        try:
            return int(target_id)
        except ValueError as e:
            raise CaptureError(f"Unknown capture target: {target_id}") from e

    def start(self, target_id: str) -> None:
        """Open the target device and start recording in a background thread."""
        if self.is_recording:
            raise CaptureError("Capture already in progress")

        logger.info(f"Starting audio capture on target {target_id}")
        self.__open_audio_stream(target_id)

        self.target_id = target_id
        self.buffer = AudioBuffer(sample_rate=self.sample_rate, channels=self.channels)
        self.stop_event.clear()
        self.pause_event.clear()
        self.start_time = datetime.now()
        self.total_chunks = 0

        # Start recording thread
        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self.recording_thread.start()
        self.is_recording = True

    def pause(self) -> None:
        """Stop delivering chunks until resume()."""
        if self.is_recording:
            self.pause_event.set()
            logger.info("Audio capture paused")

    def resume(self) -> None:
        """Continue delivering chunks after pause()."""
        if self.is_recording:
            self.pause_event.clear()
            logger.info("Audio capture resumed")

    def stop(self) -> AudioBuffer:
        """Stop recording, flush the device buffer and hand over the recorded audio."""
        buffer = self.buffer or AudioBuffer(sample_rate=self.sample_rate, channels=self.channels)
        if not self.is_recording:
            logger.warning("No capture in progress")
            self.buffer = None
            return buffer

        logger.info("Stopping audio capture")
        self.stop_event.set()

        # Wait for recording thread to finish
        if self.recording_thread and self.recording_thread.is_alive():
            self.recording_thread.join(timeout=self.chunk_size / self.sample_rate + 2.0)
            if self.recording_thread.is_alive():
                logger.warning("Recording thread did not stop cleanly")

        self.is_recording = False
        self.buffer = None
        logger.info(f"Capture stopped. Total chunks: {self.total_chunks}, "
                    f"{buffer.duration_seconds:.1f}s buffered")
        return buffer

    def release(self) -> None:
        """Close the stream and PyAudio instance if still open."""
        if self.is_recording:
            self.stop()
        self.__close_audio_stream()

    def describe_target(self, target_id: str) -> str:
        """Human-readable name of a capture target, used as the default title."""
        index = self._device_index(target_id)
        audio = pyaudio.PyAudio()
        try:
            info = (audio.get_default_input_device_info() if index is None
                    else audio.get_device_info_by_index(index))
            return str(info.get("name", target_id))
        except (IOError, OSError) as e:
            logger.debug(f"Could not describe target {target_id}: {e}")
            return str(target_id)
        finally:
            audio.terminate()

    @staticmethod
    def list_targets() -> List[Dict[str, Any]]:
        """List input devices usable as capture targets."""
        audio = pyaudio.PyAudio()
        try:
            targets = []
            for index in range(audio.get_device_count()):
                info = audio.get_device_info_by_index(index)
                if info.get("maxInputChannels", 0) > 0:
                    targets.append({
                        "target_id": str(index),
                        "name": info.get("name", ""),
                        "default_sample_rate": info.get("defaultSampleRate"),
                    })
            return targets
        finally:
            audio.terminate()

    def __open_audio_stream(self, target_id: str) -> None:
        index = self._device_index(target_id)
        with self._resource_lock:
            self.pyaudio_instance = pyaudio.PyAudio()
            try:
                self.stream = self.pyaudio_instance.open(
                    format=self.format,
                    channels=self.channels,
                    rate=self.sample_rate,
                    input=True,
                    input_device_index=index,
                    frames_per_buffer=self.chunk_size,
                    stream_callback=None
                )
            except (IOError, OSError, ValueError) as e:
                self.pyaudio_instance.terminate()
                self.pyaudio_instance = None
                self.stream = None
                raise CaptureError(f"Could not open capture target {target_id}: {e}") from e
        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.chunk_size} samples/chunk")

    def __close_audio_stream(self) -> None:
        with self._resource_lock:
            if self.stream is not None:
                try:
                    if not self.stream.is_stopped():
                        self.stream.stop_stream()
                    self.stream.close()
                except (IOError, OSError) as e:
                    logger.warning(f"Error closing audio stream: {e}")
                self.stream = None
            if self.pyaudio_instance is not None:
                self.pyaudio_instance.terminate()
                self.pyaudio_instance = None

    def __read_audio_chunk(self, frames: int) -> bytes:
        audio_chunk = self.stream.read(frames, exception_on_overflow=False)
        self.total_chunks += 1
        return audio_chunk

    def __publish_audio_event(self, audio_chunk: bytes, final: bool = False) -> None:
        audio_event = AudioEvent(
            chunk_id=f"chunk_{self.total_chunks}",
            audio_data=audio_chunk,
            timestamp=time.time(),
            sequence_number=self.total_chunks,
            sample_rate=self.sample_rate,
            channels=self.channels,
            final=final
        )
        self.buffer.on_audio_event(audio_event)

    def _record_continuously(self) -> None:
        """Internal method: continuous recording loop in background thread."""
        try:
            while not self.stop_event.is_set():
                if self.pause_event.is_set():
                    if self.stream.is_active():
                        self.stream.stop_stream()
                    self.stop_event.wait(0.05)
                    continue
                if self.stream.is_stopped():
                    self.stream.start_stream()
                self.__publish_audio_event(self.__read_audio_chunk(self.chunk_size))

            # Final flush of whatever the device has buffered
            if not self.pause_event.is_set():
                available = self.stream.get_read_available()
                if available > 0:
                    self.__publish_audio_event(self.__read_audio_chunk(available), final=True)
        except (IOError, OSError) as e:
            logger.error(f"Capture target {self.target_id} lost: {e}")
            if self.on_target_lost and not self.stop_event.is_set():
                self.on_target_lost(self.target_id)
        finally:
            self.__close_audio_stream()

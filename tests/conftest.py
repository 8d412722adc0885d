"""Pytest configuration and fixtures for tabscribe tests."""

import io
import asyncio
import uuid
import wave
import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import Mock, patch

import numpy as np
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from pubsub import pub

from tabscribe.audio.buffer import AudioBuffer
from tabscribe.config import TabscribeConfig
from tabscribe.errors import CaptureError
from tabscribe.models.transcription import Segment
from tabscribe.notifications import NotificationChannel
from tabscribe.transcription.base import AbstractTranscriptionBackend


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without network or hardware")
    config.addinivalue_line("markers", "integration: end-to-end tests across components")
    config.addinivalue_line("markers", "hardware: tests that need a real audio input device")


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def audio_test_data():
    """Generate 16-bit mono PCM test audio."""
    def generate_audio(pattern="sine", duration_seconds=1.0, sample_rate=16000, amplitude=0.5):
        """Generate audio data for testing.

        Args:
            pattern: Type of audio pattern ('sine', 'noise', 'silence')
            duration_seconds: Duration of audio
            sample_rate: Sample rate in Hz
            amplitude: Peak amplitude in [0, 1]

        Returns:
            bytes: Audio data as bytes
        """
        samples = int(duration_seconds * sample_rate)

        if pattern == "sine":
            t = np.arange(samples) / sample_rate
            wave_data = np.sin(2 * np.pi * 440 * t)
        elif pattern == "noise":
            wave_data = np.random.uniform(-1, 1, samples)
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        return (wave_data * amplitude * 32767).astype(np.int16).tobytes()

    return generate_audio


@pytest.fixture
def sample_wav_bytes(audio_test_data):
    """A one-second 44.1 kHz stereo WAV file, as bytes."""
    mono = np.frombuffer(audio_test_data("sine", 1.0, 44100), dtype=np.int16)
    stereo = np.repeat(mono, 2)
    output = io.BytesIO()
    with wave.open(output, 'wb') as wf:
        wf.setnchannels(2)
        wf.setsampwidth(2)
        wf.setframerate(44100)
        wf.writeframes(stereo.tobytes())
    return output.getvalue()


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # Configure mock stream
        mock_stream.read.return_value = b'\x00\x01' * 1600
        mock_stream.is_active.return_value = True
        mock_stream.is_stopped.return_value = False
        mock_stream.get_read_available.return_value = 0

        # Configure mock PyAudio instance
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.get_default_input_device_info.return_value = {"name": "Built-in Microphone"}
        mock_pyaudio_instance.get_device_count.return_value = 2
        mock_pyaudio_instance.get_device_info_by_index.side_effect = lambda i: [
            {"name": "Speakers", "maxInputChannels": 0, "defaultSampleRate": 48000.0},
            {"name": "USB Mic", "maxInputChannels": 1, "defaultSampleRate": 44100.0},
        ][i]

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def test_config(temp_data_dir):
    """Configuration rooted in a temporary directory, with no cloud credential."""
    return TabscribeConfig.from_dict({
        "dashscope": {"api_key": ""},
        "transcription": {"keepalive_interval_seconds": 25},
        "storage": {
            "data_directory": temp_data_dir,
            "output_directory": str(Path(temp_data_dir) / "transcripts"),
            "session_file": str(Path(temp_data_dir) / "session_state.json"),
        },
        "logging": {"file_path": str(Path(temp_data_dir) / "logs" / "tabscribe.log")},
    })


@pytest.fixture(autouse=True)
def no_ambient_api_key(monkeypatch):
    """Keep a developer's DASHSCOPE_API_KEY from switching tests to the cloud path."""
    monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)


class Recorder:
    """Notification listener that keeps everything it receives.

    pubsub holds listeners weakly; tests keep the Recorder alive.
    """

    def __init__(self):
        self.messages: List[Any] = []

    def on_message(self, message):
        self.messages.append(message)

    def of_type(self, message_type) -> List[Any]:
        return [m for m in self.messages if isinstance(m, message_type)]


@pytest.fixture
def channel():
    """Notification channel on its own topic prefix."""
    yield NotificationChannel(prefix=f"t{uuid.uuid4().hex[:8]}")
    pub.unsubAll()


@pytest.fixture
def recorder(channel):
    """Recorder subscribed to every topic of ``channel``."""
    rec = Recorder()
    channel.subscribe_all(rec.on_message)
    return rec


class FakeClock:
    """Manually advanced wall clock, in seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class FakeCapture:
    """In-memory capture source; stop() hands over ``audio`` as the recording."""

    def __init__(self, audio: bytes = b'', sample_rate: int = 16000, channels: int = 1):
        self.audio = audio
        self.sample_rate = sample_rate
        self.channels = channels
        self.on_target_lost = None
        self.fail_on_start: Optional[Exception] = None
        self.calls: List[str] = []
        self.target_id: Optional[str] = None
        self.released = 0

    def start(self, target_id: str) -> None:
        self.calls.append("start")
        if self.fail_on_start:
            raise self.fail_on_start
        self.target_id = target_id

    def pause(self) -> None:
        self.calls.append("pause")

    def resume(self) -> None:
        self.calls.append("resume")

    def stop(self) -> AudioBuffer:
        self.calls.append("stop")
        buffer = AudioBuffer(sample_rate=self.sample_rate, channels=self.channels)
        buffer.add_audio_chunk(self.audio)
        return buffer

    def release(self) -> None:
        self.calls.append("release")
        self.released += 1

    def describe_target(self, target_id: str) -> str:
        return f"Tab {target_id}"

    def lose_target(self) -> None:
        """Simulate the capture thread losing its device."""
        self.on_target_lost(self.target_id)


@pytest.fixture
def fake_capture(audio_test_data):
    return FakeCapture(audio=audio_test_data("sine", 2.0))


@pytest.fixture
def failing_capture():
    capture = FakeCapture()
    capture.fail_on_start = CaptureError("Permission denied")
    return capture


class FakeBackend(AbstractTranscriptionBackend):
    """Backend returning canned segments (or raising) and recording what it was given."""

    def __init__(self, segments: Optional[List[Segment]] = None, error: Optional[Exception] = None,
                 name: str = "fake-model"):
        super().__init__("zh")
        self.segments = segments or []
        self.error = error
        self.name = name
        self.received: List[np.ndarray] = []

    @property
    def model_name(self) -> str:
        return self.name

    async def transcribe_audio(self, pcm, on_progress):
        self.received.append(pcm)
        on_progress(50, "Transcribing...")
        if self.error:
            raise self.error
        return list(self.segments)


@pytest.fixture
def fake_backend():
    return FakeBackend(segments=[Segment(text="你好世界", start=0.0, end=2.0)])


@pytest.fixture
def backend_factory():
    """Build FakeBackends with custom segments or errors."""
    return FakeBackend


class BlockingBackend(FakeBackend):
    """Backend that waits for ``release_event`` so a job stays outstanding."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.release_event = asyncio.Event()

    async def transcribe_audio(self, pcm, on_progress):
        await self.release_event.wait()
        return await super().transcribe_audio(pcm, on_progress)


@pytest.fixture
def blocking_backend():
    return BlockingBackend()


class FakeDashScope:
    """In-process stand-in for the DashScope upload, task and result endpoints."""

    def __init__(self):
        self.base_url = ""
        self.requests: List[Dict[str, Any]] = []
        self.upload_fields: List[str] = []
        self.uploads: Dict[str, bytes] = {}
        self.submissions: List[Dict[str, Any]] = []

        # One status per poll; the last one repeats. None means "no status in the response".
        self.poll_statuses: List[Optional[str]] = ["PENDING", "RUNNING", "SUCCEEDED"]
        self.sentences: List[Dict[str, Any]] = [{"begin_time": 0, "end_time": 2000, "text": "你好世界"}]
        self.submit_response: Optional[Dict[str, Any]] = None
        self.results_override: Optional[List[Dict[str, Any]]] = None
        self.transcripts_override: Optional[List[Dict[str, Any]]] = None
        self.failure = {"code": "InvalidFile.DecodeFailed", "message": "The audio file cannot be decoded."}
        self.policy_status = 200
        self.sync_status = 404
        self.poll_count = 0

        self.app = web.Application(client_max_size=16 * 1024 * 1024)
        self.app.router.add_get("/api/v1/uploads", self.handle_policy)
        self.app.router.add_post("/oss", self.handle_upload)
        self.app.router.add_post("/api/v1/services/audio/asr/transcription", self.handle_submit)
        self.app.router.add_get("/api/v1/tasks/{task_id}", self.handle_task)
        self.app.router.add_get("/results/{task_id}.json", self.handle_results)
        self.app.router.add_post("/compatible-mode/v1/audio/transcriptions", self.handle_sync)

    def _record(self, request: web.Request) -> None:
        self.requests.append({
            "method": request.method,
            "path": request.path,
            "query": dict(request.query),
            "headers": request.headers.copy(),
        })

    async def handle_policy(self, request: web.Request) -> web.Response:
        self._record(request)
        if self.policy_status != 200:
            return web.json_response({"code": "InvalidApiKey", "message": "Invalid API-key provided."},
                                     status=self.policy_status)
        origin = str(request.url.origin())
        return web.json_response({
            "request_id": "req-policy",
            "data": {
                "policy": "eyJleHBpcmF0aW9uIjoiMjAyNiJ9",
                "signature": "c2lnbmF0dXJl",
                "upload_dir": "dashscope-instant/abc123/2026-10-19/xyz",
                "upload_host": f"{origin}/oss",
                "expire_in_seconds": 300,
                "max_file_size_mb": 1024,
                "oss_access_key_id": "LTAI-test",
                "x_oss_object_acl": "private",
                "x_oss_forbid_overwrite": "true",
            },
        })

    async def handle_upload(self, request: web.Request) -> web.Response:
        self._record(request)
        reader = await request.multipart()
        fields: Dict[str, bytes] = {}
        async for part in reader:
            self.upload_fields.append(part.name)
            fields[part.name] = await part.read()
        self.uploads[fields["key"].decode()] = fields["file"]
        return web.Response(status=200)

    async def handle_submit(self, request: web.Request) -> web.Response:
        self._record(request)
        self.submissions.append(await request.json())
        if self.submit_response is not None:
            return web.json_response(self.submit_response)
        return web.json_response({
            "request_id": "req-submit",
            "output": {"task_id": "task-1", "task_status": "PENDING"},
        })

    async def handle_task(self, request: web.Request) -> web.Response:
        self._record(request)
        self.poll_count += 1
        status = self.poll_statuses.pop(0) if len(self.poll_statuses) > 1 else self.poll_statuses[0]
        task_id = request.match_info["task_id"]

        if status is None:
            return web.json_response({"request_id": "req-poll", "output": {"task_id": task_id}})

        output: Dict[str, Any] = {"task_id": task_id, "task_status": status}
        if status == "SUCCEEDED":
            origin = str(request.url.origin())
            output["results"] = self.results_override if self.results_override is not None else [{
                "file_url": f"oss://{next(iter(self.uploads), '')}",
                "transcription_url": f"{origin}/results/{task_id}.json",
                "subtask_status": "SUCCEEDED",
            }]
        elif status in ("FAILED", "CANCELED"):
            output.update(self.failure)
        return web.json_response({"request_id": "req-poll", "output": output})

    async def handle_results(self, request: web.Request) -> web.Response:
        self._record(request)
        return web.json_response({
            "file_url": "oss://recording.wav",
            "transcripts": (self.transcripts_override if self.transcripts_override is not None
                            else [{"channel_id": 0, "sentences": self.sentences}]),
        })

    async def handle_sync(self, request: web.Request) -> web.Response:
        self._record(request)
        if self.sync_status != 200:
            return web.json_response({"error": {"message": "not supported"}}, status=self.sync_status)
        return web.json_response({
            "text": "同步结果",
            "segments": [{"start": 0.0, "end": 1.5, "text": "同步结果"}],
        })

    def requests_to(self, path_prefix: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["path"].startswith(path_prefix)]


@pytest_asyncio.fixture
async def fake_dashscope():
    """Running fake DashScope server; ``base_url`` points at it."""
    fake = FakeDashScope()
    server = TestServer(fake.app)
    await server.start_server()
    fake.base_url = str(server.make_url("/")).rstrip("/")
    yield fake
    await server.close()

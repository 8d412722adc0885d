"""Unit tests for the DashScope backend, against an in-process fake service."""

import aiohttp
import numpy as np
import pytest

from tabscribe.config import TabscribeConfig
from tabscribe.errors import NetworkError, PollTimeoutError, ProtocolError, TaskError
from tabscribe.models.transcription import JobStatus, Segment, TranscriptionJob
from tabscribe.transcription.dashscope_backend import DashScopeBackend
from tabscribe.transcription.polling import PollPolicy


async def no_sleep(seconds):
    return None


def make_backend(fake, **kwargs):
    kwargs.setdefault("poll_policy", PollPolicy(sleep=no_sleep))
    return DashScopeBackend(api_key="sk-test", base_url=fake.base_url, **kwargs)


def tone(seconds=1.0):
    t = np.arange(int(16000 * seconds)) / 16000
    return (0.5 * np.sin(2 * np.pi * 220 * t)).astype(np.float32)


class ProgressLog:
    def __init__(self):
        self.values = []

    def __call__(self, progress, status):
        self.values.append((progress, status))


@pytest.mark.unit
class TestDashScopeBackend:

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            DashScopeBackend(api_key="")

    def test_from_config(self):
        config = TabscribeConfig.from_dict({"dashscope": {
            "model": "paraformer-v1", "max_poll_attempts": 10, "base_url": "http://localhost:1/",
        }})

        backend = DashScopeBackend.from_config(config, "sk-x")

        assert backend.model_name == "paraformer-v1"
        assert backend.base_url == "http://localhost:1"
        assert backend.poll_policy.max_attempts == 10

    @pytest.mark.asyncio
    async def test_full_protocol(self, fake_dashscope):
        progress = ProgressLog()
        backend = make_backend(fake_dashscope)

        segments = await backend.transcribe_audio(tone(), progress)

        assert segments == [Segment(text="你好世界", start=0.0, end=2.0)]
        assert [r["path"] for r in fake_dashscope.requests] == [
            "/api/v1/uploads",
            "/oss",
            "/api/v1/services/audio/asr/transcription",
            "/api/v1/tasks/task-1",
            "/api/v1/tasks/task-1",
            "/api/v1/tasks/task-1",
            "/results/task-1.json",
        ]
        values = [p for p, _ in progress.values]
        assert values == sorted(values)
        assert values[0] == 10 and values[-1] == 90

    @pytest.mark.asyncio
    async def test_policy_request(self, fake_dashscope):
        await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        policy_request = fake_dashscope.requests_to("/api/v1/uploads")[0]
        assert policy_request["query"] == {"action": "getPolicy", "model": "paraformer-v2"}
        assert policy_request["headers"]["Authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_upload_form_puts_file_last(self, fake_dashscope):
        await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        assert fake_dashscope.upload_fields == [
            "OSSAccessKeyId", "Signature", "policy", "x-oss-object-acl",
            "x-oss-forbid-overwrite", "key", "success_action_status", "file",
        ]

    @pytest.mark.asyncio
    async def test_uploaded_object_is_wav_under_upload_dir(self, fake_dashscope):
        await make_backend(fake_dashscope).transcribe_audio(tone(1.0), ProgressLog())

        (key, data), = fake_dashscope.uploads.items()
        assert key.startswith("dashscope-instant/abc123/2026-10-19/xyz/recording_")
        assert key.endswith(".wav")
        assert data[:4] == b"RIFF" and data[8:12] == b"WAVE"
        assert len(data) == 44 + 32000

    @pytest.mark.asyncio
    async def test_submission(self, fake_dashscope):
        await make_backend(fake_dashscope, language="en").transcribe_audio(tone(), ProgressLog())

        submit = fake_dashscope.requests_to("/api/v1/services")[0]
        assert submit["headers"]["X-DashScope-Async"] == "enable"
        assert submit["headers"]["X-DashScope-OssResourceResolve"] == "enable"
        assert submit["headers"]["Authorization"] == "Bearer sk-test"

        body, = fake_dashscope.submissions
        key, = fake_dashscope.uploads
        assert body == {
            "model": "paraformer-v2",
            "input": {"file_urls": [f"oss://{key}"]},
            "parameters": {"language_hints": ["en"]},
        }

    @pytest.mark.asyncio
    async def test_policy_http_error(self, fake_dashscope):
        fake_dashscope.policy_status = 401

        with pytest.raises(NetworkError) as excinfo:
            await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        assert excinfo.value.step == "getPolicy"
        assert "401" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_missing_task_id(self, fake_dashscope):
        fake_dashscope.submit_response = {"request_id": "r", "output": {"task_status": "PENDING"}}

        with pytest.raises(ProtocolError) as excinfo:
            await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        assert excinfo.value.step == "submit"
        assert "task_id" in str(excinfo.value)
        assert fake_dashscope.requests_to("/api/v1/tasks") == []

    @pytest.mark.asyncio
    async def test_failed_task_surfaces_remote_message(self, fake_dashscope):
        fake_dashscope.poll_statuses = ["RUNNING", "FAILED"]

        with pytest.raises(TaskError) as excinfo:
            await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        assert excinfo.value.status == "FAILED"
        assert excinfo.value.code == "InvalidFile.DecodeFailed"
        assert "The audio file cannot be decoded." in str(excinfo.value)
        assert fake_dashscope.requests_to("/results") == []

    @pytest.mark.asyncio
    async def test_canceled_task(self, fake_dashscope):
        fake_dashscope.poll_statuses = ["CANCELED"]

        with pytest.raises(TaskError) as excinfo:
            await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        assert excinfo.value.status == "CANCELED"

    @pytest.mark.asyncio
    async def test_failed_subtask(self, fake_dashscope):
        fake_dashscope.results_override = [{"subtask_status": "FAILED", "code": "NO_VALID_FRAGMENT",
                                            "message": "no speech"}]

        with pytest.raises(TaskError, match="NO_VALID_FRAGMENT"):
            await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

    @pytest.mark.asyncio
    async def test_success_without_results(self, fake_dashscope):
        fake_dashscope.results_override = []

        with pytest.raises(ProtocolError):
            await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

    @pytest.mark.asyncio
    async def test_invalid_transcription_url(self, fake_dashscope):
        fake_dashscope.results_override = [{"subtask_status": "SUCCEEDED", "transcription_url": "ftp://x"}]

        with pytest.raises(ProtocolError, match="transcription_url"):
            await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

    @pytest.mark.asyncio
    async def test_lost_task_status_times_out(self, fake_dashscope):
        fake_dashscope.poll_statuses = [None]

        with pytest.raises(PollTimeoutError):
            await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        assert fake_dashscope.poll_count == 5

    @pytest.mark.asyncio
    async def test_poll_attempt_ceiling(self, fake_dashscope):
        fake_dashscope.poll_statuses = ["RUNNING"]
        backend = make_backend(fake_dashscope, poll_policy=PollPolicy(max_attempts=4, sleep=no_sleep))

        with pytest.raises(PollTimeoutError):
            await backend.transcribe_audio(tone(), ProgressLog())

        assert fake_dashscope.poll_count == 4

    @pytest.mark.asyncio
    async def test_sentence_fields_default(self, fake_dashscope):
        fake_dashscope.sentences = [
            {"text": "第一句"},
            {"begin_time": 1500, "end_time": 3250, "text": "第二句"},
            {"begin_time": None, "end_time": None, "text": None},
        ]

        segments = await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        assert segments == [
            Segment(text="第一句", start=0.0, end=0.0),
            Segment(text="第二句", start=1.5, end=3.25),
            Segment(text="", start=0.0, end=0.0),
        ]

    @pytest.mark.asyncio
    async def test_no_sentences(self, fake_dashscope):
        fake_dashscope.sentences = []

        assert await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog()) == []

    @pytest.mark.asyncio
    async def test_full_text_without_sentences(self, fake_dashscope):
        fake_dashscope.transcripts_override = [{"channel_id": 0, "text": "你好世界"}]

        segments = await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        assert segments == [Segment(text="你好世界", start=0.0, end=0.0)]

    @pytest.mark.asyncio
    async def test_sentences_take_precedence_over_full_text(self, fake_dashscope):
        fake_dashscope.transcripts_override = [
            {"channel_id": 0, "text": "你好世界", "sentences": [{"begin_time": 0, "end_time": 2000, "text": "你好世界"}]},
        ]

        segments = await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        assert segments == [Segment(text="你好世界", start=0.0, end=2.0)]

    @pytest.mark.asyncio
    async def test_poll_task_returns_result_url(self, fake_dashscope):
        backend = make_backend(fake_dashscope)

        async with aiohttp.ClientSession() as session:
            job = await backend.poll_task(session, TranscriptionJob(task_id="task-9"))

        assert job.status is JobStatus.SUCCEEDED
        assert job.result_url.endswith("/results/task-9.json")

    @pytest.mark.asyncio
    async def test_sync_endpoint_used_when_enabled(self, fake_dashscope):
        fake_dashscope.sync_status = 200
        backend = make_backend(fake_dashscope, try_sync_endpoint=True)

        segments = await backend.transcribe_audio(tone(), ProgressLog())

        assert segments == [Segment(text="同步结果", start=0.0, end=1.5)]
        assert fake_dashscope.requests_to("/api/v1") == []

    @pytest.mark.asyncio
    async def test_sync_endpoint_falls_back_to_async(self, fake_dashscope):
        backend = make_backend(fake_dashscope, try_sync_endpoint=True)

        segments = await backend.transcribe_audio(tone(), ProgressLog())

        assert segments == [Segment(text="你好世界", start=0.0, end=2.0)]
        assert len(fake_dashscope.requests_to("/compatible-mode")) == 1
        assert len(fake_dashscope.submissions) == 1

    @pytest.mark.asyncio
    async def test_sync_endpoint_off_by_default(self, fake_dashscope):
        await make_backend(fake_dashscope).transcribe_audio(tone(), ProgressLog())

        assert fake_dashscope.requests_to("/compatible-mode") == []

    @pytest.mark.asyncio
    async def test_unreachable_service(self):
        backend = DashScopeBackend(api_key="sk-test", base_url="http://127.0.0.1:9",
                                   poll_policy=PollPolicy(sleep=no_sleep), request_timeout=5)

        with pytest.raises(NetworkError) as excinfo:
            await backend.transcribe_audio(tone(), ProgressLog())

        assert excinfo.value.step == "getPolicy"

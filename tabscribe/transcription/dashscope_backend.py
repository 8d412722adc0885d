"""DashScope file-transcription backend (upload, submit, poll, fetch)."""

import json
import time
import uuid
import asyncio
import logging
from typing import List, Optional, Type, TypeVar

import aiohttp
import numpy as np
from pydantic import BaseModel, ValidationError

from .base import AbstractTranscriptionBackend, ProgressCallback
from .polling import PollPolicy
from ..audio.preprocessor import encode_wav
from ..errors import NetworkError, ProtocolError, TaskError, TranscriptionError
from ..models.dashscope import (
    PollTaskResponse,
    SubmitTaskResponse,
    SyncTranscriptionResponse,
    TranscriptionPayload,
    UploadPolicy,
    UploadPolicyResponse,
)
from ..models.transcription import JobStatus, Segment, TranscriptionJob

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

PREVIEW_CHARS = 200

STEP_POLICY = "getPolicy"
STEP_UPLOAD = "upload"
STEP_SUBMIT = "submit"
STEP_POLL = "poll"
STEP_FETCH = "fetchResults"
STEP_SYNC = "syncTranscribe"


def _preview(body: str) -> str:
    return body[:PREVIEW_CHARS]


def _describe_validation(error: ValidationError) -> str:
    problems = []
    for item in error.errors()[:3]:
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        problems.append(f"{location}: {item['msg']}")
    return "; ".join(problems)


def generate_file_name() -> str:
    """Unique object name for an uploaded recording."""
    return f"recording_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.wav"


class DashScopeBackend(AbstractTranscriptionBackend):
    """Cloud recognizer speaking the DashScope asynchronous file-transcription protocol."""

    def __init__(self,
                 api_key: str,
                 base_url: str = "https://dashscope.aliyuncs.com",
                 model: str = "paraformer-v2",
                 language: str = "zh",
                 poll_policy: Optional[PollPolicy] = None,
                 try_sync_endpoint: bool = False,
                 request_timeout: float = 60.0):
        """Initialize DashScope backend.

        Args:
            api_key: DashScope credential, sent as a bearer token
            base_url: Service root, without a trailing slash
            model: Recognition model identifier
            language: Language hint sent with the task
            poll_policy: Polling cadence and limits for the task status
            try_sync_endpoint: Attempt the synchronous endpoint before the async protocol
            request_timeout: Per-request timeout in seconds
        """
        super().__init__(language)
        if not api_key:
            raise ValueError("DashScope API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.poll_policy = poll_policy or PollPolicy()
        self.try_sync_endpoint = try_sync_endpoint
        self.request_timeout = request_timeout

    @classmethod
    def from_config(cls, config, api_key: str) -> "DashScopeBackend":
        """Build a backend from the ``dashscope`` config section."""
        policy = PollPolicy(
            interval_seconds=config.get('dashscope.poll_interval_seconds', 2.0),
            max_attempts=config.get('dashscope.max_poll_attempts', 300),
            max_empty_statuses=config.get('dashscope.max_empty_statuses', 5),
        )
        return cls(
            api_key=api_key,
            base_url=config.get('dashscope.base_url', "https://dashscope.aliyuncs.com"),
            model=config.get('dashscope.model', "paraformer-v2"),
            language=config.get('dashscope.language', "zh"),
            poll_policy=policy,
            try_sync_endpoint=config.get('dashscope.try_sync_endpoint', False),
            request_timeout=config.get('dashscope.request_timeout_seconds', 60),
        )

    @property
    def model_name(self) -> str:
        return self.model

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _request(self, session: aiohttp.ClientSession, step: str, method: str, url: str, **kwargs) -> str:
        """Perform one HTTP exchange and return the body; transport or HTTP failures raise NetworkError."""
        try:
            async with session.request(method, url, **kwargs) as response:
                body = await response.text()
                if response.status >= 400:
                    raise NetworkError(step, f"HTTP {response.status}: {_preview(body)}")
                return body
        except aiohttp.ClientError as e:
            raise NetworkError(step, f"{type(e).__name__}: {e}") from e
        except asyncio.TimeoutError as e:
            raise NetworkError(step, f"request timed out after {self.request_timeout}s") from e

    @staticmethod
    def _parse(step: str, body: str, schema: Type[M]) -> M:
        try:
            data = json.loads(body)
        except ValueError as e:
            raise ProtocolError(step, "response is not valid JSON", preview=_preview(body)) from e
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(step, f"unexpected response: {_describe_validation(e)}",
                                preview=_preview(body)) from e

    async def get_upload_policy(self, session: aiohttp.ClientSession) -> UploadPolicy:
        """Obtain temporary upload credentials for the configured model."""
        url = f"{self.base_url}/api/v1/uploads"
        body = await self._request(session, STEP_POLICY, "GET", url,
                                   params={"action": "getPolicy", "model": self.model},
                                   headers=self._auth_headers())
        policy = self._parse(STEP_POLICY, body, UploadPolicyResponse).data
        logger.debug(f"Upload policy obtained: host={policy.upload_host} dir={policy.upload_dir}")
        return policy

    async def upload_file(self, session: aiohttp.ClientSession, policy: UploadPolicy,
                          wav: bytes, file_name: Optional[str] = None) -> str:
        """Upload WAV bytes to the object store and return its ``oss://`` reference."""
        file_name = file_name or generate_file_name()
        key = f"{policy.upload_dir}/{file_name}"

        form = aiohttp.FormData()
        form.add_field("OSSAccessKeyId", policy.oss_access_key_id)
        form.add_field("Signature", policy.signature)
        form.add_field("policy", policy.policy)
        form.add_field("x-oss-object-acl", policy.x_oss_object_acl)
        form.add_field("x-oss-forbid-overwrite", policy.x_oss_forbid_overwrite)
        form.add_field("key", key)
        form.add_field("success_action_status", "200")
        # The object store ignores fields that follow the file part
        form.add_field("file", wav, filename=file_name, content_type="audio/wav")

        await self._request(session, STEP_UPLOAD, "POST", policy.upload_host, data=form)
        logger.info(f"Uploaded {len(wav)} bytes as {key}")
        return f"oss://{key}"

    async def submit_task(self, session: aiohttp.ClientSession, file_url: str) -> TranscriptionJob:
        """Submit an asynchronous transcription task for an uploaded file."""
        url = f"{self.base_url}/api/v1/services/audio/asr/transcription"
        headers = {
            **self._auth_headers(),
            "Content-Type": "application/json",
            "X-DashScope-Async": "enable",
            "X-DashScope-OssResourceResolve": "enable",
        }
        payload = {
            "model": self.model,
            "input": {"file_urls": [file_url]},
            "parameters": {"language_hints": [self.language]},
        }
        body = await self._request(session, STEP_SUBMIT, "POST", url, headers=headers, json=payload)
        output = self._parse(STEP_SUBMIT, body, SubmitTaskResponse).output
        if not output.task_id:
            raise ProtocolError(STEP_SUBMIT, "no task_id returned", preview=_preview(body))
        logger.info(f"Transcription task submitted: {output.task_id}")
        return TranscriptionJob(task_id=output.task_id,
                                status=JobStatus.parse(output.task_status) or JobStatus.PENDING)

    async def get_task(self, session: aiohttp.ClientSession, task_id: str) -> PollTaskResponse:
        """Fetch the task's current status."""
        url = f"{self.base_url}/api/v1/tasks/{task_id}"
        body = await self._request(session, STEP_POLL, "GET", url, headers=self._auth_headers())
        return self._parse(STEP_POLL, body, PollTaskResponse)

    async def poll_task(self, session: aiohttp.ClientSession, job: TranscriptionJob,
                        on_progress: Optional[ProgressCallback] = None) -> TranscriptionJob:
        """Poll until the task is terminal; return it with its result URL on success.

        Raises:
            TaskError: the task ended FAILED, CANCELED, EXPIRED or UNKNOWN
            PollTimeoutError: the poll budget ran out
            ProtocolError: success without a usable result URL
        """
        policy = self.poll_policy

        def report_pending(attempt: int, status: Optional[JobStatus]) -> None:
            if on_progress is None:
                return
            fraction = min(attempt / policy.max_attempts, 0.75)
            label = status.value if status else "waiting"
            on_progress(25 + round(fraction * 80), f"Transcribing ({label})...")

        response = await policy.run(
            lambda: self.get_task(session, job.task_id),
            lambda r: JobStatus.parse(r.task_status),
            on_pending=report_pending,
        )
        status = JobStatus.parse(response.task_status)
        output = response.output
        job.status = status

        if status is not JobStatus.SUCCEEDED:
            raise TaskError(status.value, output.code, output.message or "Unknown error")

        if not output.results:
            raise ProtocolError(STEP_POLL, "task succeeded but returned no results")
        result = output.results[0]
        if JobStatus.parse(result.subtask_status) is JobStatus.FAILED:
            raise TaskError("FAILED", result.code, result.message or "Subtask failed")
        if not result.transcription_url or not result.transcription_url.startswith(("http://", "https://")):
            raise ProtocolError(STEP_POLL, f"missing or invalid transcription_url: {result.transcription_url!r}")

        job.result_url = result.transcription_url
        logger.info(f"Transcription task {job.task_id} succeeded")
        return job

    async def fetch_results(self, session: aiohttp.ClientSession, result_url: str) -> List[Segment]:
        """Download the result document and flatten its sentences into segments (ms -> s).

        A transcript with text but no sentences becomes one [0, 0] segment.
        """
        body = await self._request(session, STEP_FETCH, "GET", result_url)
        payload = self._parse(STEP_FETCH, body, TranscriptionPayload)

        segments = [
            Segment(text=sentence.text,
                    start=sentence.begin_time / 1000,
                    end=sentence.end_time / 1000)
            for transcript in payload.transcripts
            for sentence in transcript.sentences
        ]
        segments += [
            Segment(text=transcript.text, start=0.0, end=0.0)
            for transcript in payload.transcripts
            if not transcript.sentences and transcript.text
        ]
        logger.info(f"Fetched {len(segments)} segments")
        return segments

    async def transcribe_sync(self, session: aiohttp.ClientSession, wav: bytes) -> List[Segment]:
        """Single-request transcription through the OpenAI-compatible endpoint."""
        url = f"{self.base_url}/compatible-mode/v1/audio/transcriptions"
        form = aiohttp.FormData()
        form.add_field("file", wav, filename="audio.wav", content_type="audio/wav")
        form.add_field("model", self.model)
        form.add_field("language", self.language)
        form.add_field("response_format", "verbose_json")

        body = await self._request(session, STEP_SYNC, "POST", url, headers=self._auth_headers(), data=form)
        response = self._parse(STEP_SYNC, body, SyncTranscriptionResponse)
        if response.segments:
            return [Segment(text=s.text, start=s.start, end=s.end) for s in response.segments]
        if response.text:
            return [Segment(text=response.text, start=0.0, end=None)]
        return []

    async def transcribe_audio(self, pcm: np.ndarray, on_progress: ProgressCallback) -> List[Segment]:
        wav = encode_wav(pcm)
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            if self.try_sync_endpoint:
                on_progress(10, "Transcribing (sync)...")
                try:
                    return await self.transcribe_sync(session, wav)
                except TranscriptionError as e:
                    logger.info(f"Sync endpoint unavailable, using async protocol: {e}")

            on_progress(10, "Requesting upload credentials...")
            policy = await self.get_upload_policy(session)

            on_progress(15, "Uploading audio...")
            file_url = await self.upload_file(session, policy, wav)

            on_progress(20, "Submitting transcription task...")
            job = await self.submit_task(session, file_url)

            on_progress(25, "Waiting for transcription...")
            job = await self.poll_task(session, job, on_progress)

            on_progress(90, "Downloading results...")
            return await self.fetch_results(session, job.result_url)

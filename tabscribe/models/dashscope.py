"""Wire schemas for the DashScope file-transcription protocol.

One model per protocol step. Required fields are declared without defaults so
that a response missing them fails validation instead of surfacing later as a
``None`` deep inside the client.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class UploadPolicy(_WireModel):
    """Temporary object-store credentials returned by ``action=getPolicy``."""
    policy: str
    signature: str
    upload_dir: str
    upload_host: str
    oss_access_key_id: str
    x_oss_object_acl: str = "private"
    x_oss_forbid_overwrite: str = "true"
    expire_in_seconds: Optional[int] = None
    max_file_size_mb: Optional[int] = None

    @field_validator("x_oss_object_acl", "x_oss_forbid_overwrite", mode="before")
    @classmethod
    def _stringify(cls, value):
        if isinstance(value, bool):
            return "true" if value else "false"
        return value


class UploadPolicyResponse(_WireModel):
    request_id: Optional[str] = None
    data: UploadPolicy


class SubmitOutput(_WireModel):
    task_id: str
    task_status: Optional[str] = None


class SubmitTaskResponse(_WireModel):
    request_id: Optional[str] = None
    output: SubmitOutput


class TaskResult(_WireModel):
    file_url: Optional[str] = None
    transcription_url: Optional[str] = None
    subtask_status: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None


class PollOutput(_WireModel):
    task_id: Optional[str] = None
    task_status: Optional[str] = None
    results: List[TaskResult] = Field(default_factory=list)
    code: Optional[str] = None
    message: Optional[str] = None


class PollTaskResponse(_WireModel):
    """Task status. ``output`` and its status may legitimately be absent."""
    request_id: Optional[str] = None
    output: Optional[PollOutput] = None

    @property
    def task_status(self) -> Optional[str]:
        return self.output.task_status if self.output else None


class Sentence(_WireModel):
    text: str = ""
    begin_time: float = 0
    end_time: float = 0

    @field_validator("text", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return value or ""

    @field_validator("begin_time", "end_time", mode="before")
    @classmethod
    def _none_to_zero(cls, value):
        return value or 0


class Transcript(_WireModel):
    channel_id: Optional[int] = None
    text: Optional[str] = None
    sentences: List[Sentence] = Field(default_factory=list)

    @field_validator("sentences", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value or []


class TranscriptionPayload(_WireModel):
    """Document behind ``transcription_url``."""
    file_url: Optional[str] = None
    transcripts: List[Transcript] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _wrap_bare_transcript(cls, data):
        # Some payloads carry a single transcript at the top level
        if isinstance(data, dict) and "transcripts" not in data:
            return {"file_url": data.get("file_url"), "transcripts": [data]}
        return data


class SyncSegment(_WireModel):
    text: str = ""
    start: float = 0
    end: float = 0


class SyncTranscriptionResponse(_WireModel):
    """OpenAI-compatible ``verbose_json`` response."""
    text: Optional[str] = None
    segments: List[SyncSegment] = Field(default_factory=list)

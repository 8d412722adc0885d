"""Transcription backends and transcript post-processing."""

from .base import AbstractTranscriptionBackend, ProgressCallback
from .polling import PollPolicy
from .dashscope_backend import DashScopeBackend
from .whisper_backend import WhisperBackend
from .script_converter import ScriptConverter
from .hallucination_filter import filter_hallucinations

__all__ = [
    "AbstractTranscriptionBackend",
    "ProgressCallback",
    "PollPolicy",
    "DashScopeBackend",
    "WhisperBackend",
    "ScriptConverter",
    "filter_hallucinations",
]

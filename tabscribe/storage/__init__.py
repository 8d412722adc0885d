"""Durable session state and transcript delivery."""

from .session_store import SessionStore
from .file_manager import FileManager

__all__ = [
    "SessionStore",
    "FileManager",
]

"""Commands accepted by the session controller and their results."""

from dataclasses import dataclass
from typing import Optional, Union

from .session import SessionStatus


@dataclass(frozen=True)
class StartCommand:
    target_id: str
    title: Optional[str] = None
    source_url: Optional[str] = None


@dataclass(frozen=True)
class PauseCommand:
    pass


@dataclass(frozen=True)
class ResumeCommand:
    pass


@dataclass(frozen=True)
class StopCommand:
    pass


@dataclass(frozen=True)
class GetStatusCommand:
    pass


Command = Union[StartCommand, PauseCommand, ResumeCommand, StopCommand, GetStatusCommand]


@dataclass
class CommandResult:
    """Outcome of a dispatched command."""
    success: bool
    status: Optional[SessionStatus] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

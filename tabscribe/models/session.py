"""Session-related data models."""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Dict, Any


class SessionState(Enum):
    """Lifecycle state of the recording controller."""
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    TRANSCRIBING = "transcribing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class Session:
    """The single active recording context."""
    target_id: str
    start_time: int  # Epoch milliseconds; shifted forward on resume
    title: str = "Untitled"
    source_url: str = ""
    paused: bool = False
    paused_elapsed_ms: int = 0
    status_target_id: Optional[str] = None

    def elapsed_ms(self, now_ms: int) -> int:
        """Effective recording time, excluding paused intervals."""
        if self.paused:
            return self.paused_elapsed_ms
        return max(0, now_ms - self.start_time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            target_id=str(data["target_id"]),
            start_time=int(data["start_time"]),
            title=data.get("title") or "Untitled",
            source_url=data.get("source_url") or "",
            paused=bool(data.get("paused", False)),
            paused_elapsed_ms=int(data.get("paused_elapsed_ms") or 0),
            status_target_id=data.get("status_target_id", data["target_id"]),
        )


@dataclass
class SessionStatus:
    """Answer to a status query."""
    state: SessionState
    active: bool = False
    target_id: Optional[str] = None
    paused: bool = False
    paused_elapsed_ms: int = 0
    start_time: Optional[int] = None

"""Bounded polling policy for remote jobs."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import PollTimeoutError
from ..models.transcription import JobStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_terminal(status: JobStatus) -> bool:
    return status.is_terminal


@dataclass
class PollPolicy:
    """Sleep-then-check loop with an attempt ceiling and an empty-status budget.

    ``max_empty_statuses`` consecutive responses without a status mean the job
    was lost, so polling stops early instead of burning the whole budget.
    """
    interval_seconds: float = 2.0
    max_attempts: int = 300
    max_empty_statuses: int = 5
    is_terminal: Callable[[JobStatus], bool] = _is_terminal
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    async def run(self,
                  check: Callable[[], Awaitable[T]],
                  status_of: Callable[[T], Optional[JobStatus]],
                  on_pending: Optional[Callable[[int, Optional[JobStatus]], None]] = None) -> T:
        """Poll ``check`` until ``status_of`` its response is terminal.

        Args:
            check: Fetches the current job state
            status_of: Extracts the status; None means the response carried none
            on_pending: Called with (attempt, status) after every non-terminal poll

        Returns:
            The first response with a terminal status

        Raises:
            PollTimeoutError: attempts exhausted, or too many consecutive empty statuses
        """
        empty_statuses = 0
        for attempt in range(self.max_attempts):
            await self.sleep(self.interval_seconds)
            response = await check()
            status = status_of(response)

            if status is None:
                empty_statuses += 1
                logger.warning(f"Poll #{attempt + 1}: no status ({empty_statuses}/{self.max_empty_statuses})")
                if empty_statuses >= self.max_empty_statuses:
                    raise PollTimeoutError(
                        f"Job reported no status for {empty_statuses} consecutive polls"
                    )
            else:
                empty_statuses = 0
                logger.debug(f"Poll #{attempt + 1}: status={status.value}")
                if self.is_terminal(status):
                    return response

            if on_pending:
                on_pending(attempt, status)

        raise PollTimeoutError(
            f"Job did not finish after {self.max_attempts} polls "
            f"({self.max_attempts * self.interval_seconds:.0f}s)"
        )

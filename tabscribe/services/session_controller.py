"""Session controller: the recording lifecycle state machine."""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set, Type

from ..audio.buffer import AudioBuffer
from ..audio.capture import CaptureSource
from ..errors import CaptureError, SessionStateError
from ..models.commands import (
    Command,
    CommandResult,
    GetStatusCommand,
    PauseCommand,
    ResumeCommand,
    StartCommand,
    StopCommand,
)
from ..models.events import StatusChanged, TranscriptionComplete
from ..models.session import Session, SessionState, SessionStatus
from ..models.transcription import TranscriptionRequest
from ..notifications import NotificationChannel
from ..storage.session_store import SessionStore
from .transcription_service import TranscriptionService

logger = logging.getLogger(__name__)


class SessionController:
    """Owns the single recording session and serializes every transition.

    The persisted session record is loaded when the controller is built;
    every operation waits for that load before touching state, so a
    restarted process answers queries from the restored session.
    """

    def __init__(self,
                 capture: CaptureSource,
                 store: SessionStore,
                 channel: NotificationChannel,
                 transcription_service: TranscriptionService,
                 clock: Callable[[], float] = time.time):
        """Initialize session controller.

        Args:
            capture: Audio capture source
            store: Durable record of the active session
            channel: Where status changes are published
            transcription_service: Runs the job started by stop()
            clock: Wall clock in seconds
        """
        self.capture = capture
        self.store = store
        self.channel = channel
        self.transcription_service = transcription_service
        self.clock = clock

        self.session: Optional[Session] = None
        self.state = SessionState.IDLE
        self.status_target_id: Optional[str] = None

        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._transcription_task: Optional[asyncio.Task] = None
        self._background_tasks: Set[asyncio.Task] = set()

        self._handlers: Dict[Type, Callable[[Command], Awaitable[SessionStatus]]] = {
            StartCommand: lambda c: self.start(c.target_id, c.title, c.source_url),
            PauseCommand: lambda c: self.pause(),
            ResumeCommand: lambda c: self.resume(),
            StopCommand: lambda c: self.stop(),
            GetStatusCommand: lambda c: self.get_status(),
        }

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._restoration: Optional[asyncio.Task] = None
            self._restore(self.store.get())
        else:
            self._restoration = loop.create_task(self._load_persisted())

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def _load_persisted(self) -> None:
        self._restore(await asyncio.to_thread(self.store.get))

    def _restore(self, session: Optional[Session]) -> None:
        if session is None:
            return
        self.session = session
        self.status_target_id = session.status_target_id
        self.state = SessionState.PAUSED if session.paused else SessionState.RECORDING
        logger.info(f"Restored session on target {session.target_id} ({self.state.value})")

    async def _ready(self) -> None:
        if self._restoration is not None:
            await self._restoration

    def _status(self) -> SessionStatus:
        session = self.session
        if session is None:
            return SessionStatus(state=self.state)
        return SessionStatus(
            state=self.state,
            active=True,
            target_id=session.target_id,
            paused=session.paused,
            paused_elapsed_ms=session.paused_elapsed_ms,
            start_time=session.start_time,
        )

    def _publish_status(self) -> None:
        session = self.session
        self.channel.publish(StatusChanged(
            state=self.state.value,
            target_id=self.status_target_id,
            start_time=session.start_time if session else None,
            paused_elapsed_ms=session.paused_elapsed_ms if session else None,
        ))

    @property
    def is_transcribing(self) -> bool:
        return self._transcription_task is not None and not self._transcription_task.done()

    async def start(self, target_id: str, title: Optional[str] = None,
                    source_url: Optional[str] = None) -> SessionStatus:
        """Begin recording ``target_id``.

        Raises:
            SessionStateError: a session is active or a transcription is outstanding
            CaptureError: the capture source could not be acquired
        """
        await self._ready()
        async with self._lock:
            if self.session is not None:
                raise SessionStateError("A recording is already in progress")
            if self.is_transcribing:
                raise SessionStateError("A transcription is still in progress")

            if not title:
                title = await asyncio.to_thread(self.capture.describe_target, target_id)

            self._loop = asyncio.get_running_loop()
            self.capture.on_target_lost = self._on_capture_target_lost
            await asyncio.to_thread(self.capture.start, target_id)

            session = Session(
                target_id=target_id,
                start_time=self._now_ms(),
                title=title or "Untitled",
                source_url=source_url or "",
                status_target_id=target_id,
            )
            self.store.set(session)
            self.session = session
            self.status_target_id = target_id
            self.state = SessionState.RECORDING

            logger.info(f"Recording started on target {target_id}: {session.title}")
            self._publish_status()
            return self._status()

    async def pause(self) -> SessionStatus:
        """Freeze the elapsed time and stop buffering audio.

        Raises:
            SessionStateError: nothing is recording, or it is already paused
        """
        await self._ready()
        async with self._lock:
            session = self.session
            if session is None:
                raise SessionStateError("No active recording to pause")
            if session.paused:
                raise SessionStateError("Recording is already paused")

            session.paused_elapsed_ms = max(0, self._now_ms() - session.start_time)
            session.paused = True
            self.store.set(session)
            self.capture.pause()
            self.state = SessionState.PAUSED

            logger.info(f"Recording paused at {session.paused_elapsed_ms} ms")
            self._publish_status()
            return self._status()

    async def resume(self) -> SessionStatus:
        """Continue a paused recording without counting the paused interval.

        Raises:
            SessionStateError: the recording is not paused
        """
        await self._ready()
        async with self._lock:
            session = self.session
            if session is None or not session.paused:
                raise SessionStateError("Recording is not paused")

            session.start_time = self._now_ms() - session.paused_elapsed_ms
            session.paused = False
            session.paused_elapsed_ms = 0
            self.store.set(session)
            self.capture.resume()
            self.state = SessionState.RECORDING

            logger.info("Recording resumed")
            self._publish_status()
            return self._status()

    async def stop(self) -> SessionStatus:
        """End the session and start transcribing it in the background.

        Raises:
            SessionStateError: nothing is recording
        """
        await self._ready()
        async with self._lock:
            session = self.session
            if session is None:
                raise SessionStateError("No active recording to stop")

            duration_seconds = session.elapsed_ms(self._now_ms()) / 1000
            audio = await asyncio.to_thread(self.capture.stop)

            self.store.remove()
            self.session = None
            self.state = SessionState.TRANSCRIBING
            logger.info(f"Recording stopped after {duration_seconds:.1f}s; transcribing")
            self._publish_status()

            request = TranscriptionRequest(
                title=session.title,
                source_url=session.source_url,
                duration_seconds=duration_seconds,
            )
            self._transcription_task = asyncio.create_task(self._run_transcription(audio, request))
            return self._status()

    async def get_status(self) -> SessionStatus:
        """Current state, answered from the restored record after a restart."""
        await self._ready()
        return self._status()

    async def _run_transcription(self, audio: AudioBuffer,
                                 request: TranscriptionRequest) -> Optional[TranscriptionComplete]:
        try:
            result = await self.transcription_service.transcribe_recording(
                audio, request, release=self.capture.release
            )
        except Exception:
            # Already logged and published as a transcription error
            self.state = SessionState.ERROR
            self._publish_status()
            result = None
        else:
            self.state = SessionState.COMPLETE
            self._publish_status()
        self.status_target_id = None
        return result

    async def wait_for_transcription(self) -> Optional[TranscriptionComplete]:
        """Wait for the job started by the last stop(); None if there was none or it failed."""
        if self._transcription_task is None:
            return None
        return await self._transcription_task

    async def on_target_closed(self, target_id: str) -> None:
        """The recorded or status-displaying target went away."""
        await self._ready()
        if self.session is not None and self.session.target_id == target_id:
            logger.info(f"Capture target {target_id} closed; stopping recording")
            await self.stop()
        if self.status_target_id == target_id:
            self.status_target_id = None

    def _on_capture_target_lost(self, target_id: str) -> None:
        # Called from the capture thread
        if self._loop is None or self._loop.is_closed():
            logger.warning(f"Capture target {target_id} lost with no event loop to stop on")
            return
        self._loop.call_soon_threadsafe(self._schedule_target_closed, target_id)

    def _schedule_target_closed(self, target_id: str) -> None:
        task = asyncio.ensure_future(self._stop_lost_target(target_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _stop_lost_target(self, target_id: str) -> None:
        try:
            await self.on_target_closed(target_id)
        except SessionStateError as e:
            logger.info(f"Ignoring lost target {target_id}: {e}")

    async def dispatch(self, command: Command) -> CommandResult:
        """Run a command and report the outcome instead of raising."""
        handler = self._handlers.get(type(command))
        if handler is None:
            return CommandResult(success=False,
                                 error=f"Unknown command: {type(command).__name__}",
                                 error_type="TypeError")
        try:
            status = await handler(command)
        except (SessionStateError, CaptureError) as e:
            logger.warning(f"{type(command).__name__} rejected: {e}")
            return CommandResult(success=False, status=self._status(),
                                 error=str(e), error_type=type(e).__name__)
        return CommandResult(success=True, status=status)

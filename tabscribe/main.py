"""Main application entry point for tabscribe."""

import sys
import signal
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tabscribe import __version__
from tabscribe.audio.buffer import AudioBuffer
from tabscribe.audio.capture import DEFAULT_TARGET, AudioCapture
from tabscribe.errors import TabscribeError
from tabscribe.models.events import (
    KeepAlive,
    StatusChanged,
    TranscriptionComplete,
    TranscriptionFailed,
    TranscriptionProgress,
)
from tabscribe.models.transcription import TranscriptionRequest
from tabscribe.notifications import NotificationChannel
from tabscribe.services.session_controller import SessionController
from tabscribe.services.transcription_service import TranscriptionService
from tabscribe.storage import FileManager, SessionStore

from .config import TabscribeConfig

logger = logging.getLogger(__name__)


class ConsoleReporter:
    """Prints channel notifications to the terminal."""

    def __init__(self, console: Console, channel: NotificationChannel):
        self.console = console
        self._last_progress = -1
        # pubsub holds a weak reference to on_message; self keeps it alive
        self._unsubscribe = channel.subscribe_all(self.on_message)

    def on_message(self, message: Any) -> None:
        if isinstance(message, StatusChanged):
            self.console.print(f"● {message.state}", style="bold blue")
        elif isinstance(message, TranscriptionProgress):
            if message.progress != self._last_progress:
                self._last_progress = message.progress
                self.console.print(f"  [{message.progress:3d}%] {escape(message.status)}")
        elif isinstance(message, TranscriptionComplete):
            self.console.print(f"✅ Transcript saved: {escape(message.path or message.filename)} "
                               f"({message.segment_count} segments)", style="bold green")
        elif isinstance(message, TranscriptionFailed):
            self.console.print(f"❌ {message.error_type}: {escape(message.message)}", style="bold red")
        elif isinstance(message, KeepAlive):
            logger.debug("keepalive")

    def close(self) -> None:
        self._unsubscribe()


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = TabscribeConfig(config_path)
        # Set up logging (override config with command line if specified)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.console = Console()
        self.reporter: Optional[ConsoleReporter] = None
        self.capture: Optional[AudioCapture] = None

    def init(self) -> None:
        logger.info("Initializing services...")

        self.channel = NotificationChannel()
        self.reporter = ConsoleReporter(self.console, self.channel)
        self.file_manager = FileManager(self.config.get_output_directory())
        self.store = SessionStore(self.config.get_session_file())
        self.capture = AudioCapture(
            sample_rate=self.config.get('audio.sample_rate', 16000),
            channels=self.config.get('audio.channels', 1),
            chunk_seconds=self.config.get('audio.chunk_seconds', 1.0),
        )
        self.transcription_service = TranscriptionService(self.config, self.channel, self.file_manager)

        if not self.config.get_dashscope_api_key():
            logger.info("No DashScope API key configured; using local Whisper model")
            if self.config.get('whisper.preload', False):
                self.console.print("🔧 Loading local Whisper model...", style="blue")
                self.transcription_service.preload_local_model()

    def list_devices(self) -> None:
        table = Table(title="Capture targets")
        table.add_column("Target", style="bold")
        table.add_column("Name")
        table.add_column("Default rate")
        for target in AudioCapture.list_targets():
            table.add_row(target["target_id"], target["name"], str(target["default_sample_rate"]))
        self.console.print(table)

    def list_transcripts(self) -> None:
        stats = self.file_manager.get_storage_stats()
        for name in self.file_manager.list_transcripts():
            self.console.print(f"📄 {escape(name)}")
        self.console.print(f"{stats['transcript_count']} transcripts, "
                           f"{stats['total_size_bytes'] / 1024:.1f} KB in {stats['output_directory']}",
                           style="dim")

    async def record(self, target_id: str, title: Optional[str], source_url: Optional[str],
                     duration: Optional[float]) -> bool:
        """Record until ``duration`` elapses or Ctrl+C, then transcribe."""
        controller = SessionController(self.capture, self.store, self.channel, self.transcription_service)

        status = await controller.get_status()
        if status.active:
            self.console.print("⚠️  Resuming control of a recording left by a previous run", style="yellow")
        else:
            await controller.start(target_id, title, source_url)

        done = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, done.set)
        loop.add_signal_handler(signal.SIGUSR1, lambda: asyncio.ensure_future(self._toggle_pause(controller)))
        self.console.print("🔴 Recording. Ctrl+C to stop, SIGUSR1 to pause/resume.", style="bold red")
        try:
            await asyncio.wait_for(done.wait(), timeout=duration)
        except asyncio.TimeoutError:
            pass
        finally:
            loop.remove_signal_handler(signal.SIGINT)
            loop.remove_signal_handler(signal.SIGUSR1)

        if (await controller.get_status()).active:
            await controller.stop()
        result = await controller.wait_for_transcription()
        return result is not None

    async def _toggle_pause(self, controller: SessionController) -> None:
        status = await controller.get_status()
        command = controller.resume if status.paused else controller.pause
        try:
            await command()
        except TabscribeError as e:
            self.console.print(f"⚠️  {escape(str(e))}", style="yellow")

    async def transcribe_file(self, path: str, title: Optional[str]) -> bool:
        """Run the transcription pipeline over an existing audio file."""
        audio = AudioBuffer()
        audio.add_audio_chunk(Path(path).read_bytes())
        request = TranscriptionRequest(
            title=title or Path(path).stem,
            source_url=Path(path).absolute().as_uri(),
            duration_seconds=0.0,
        )
        try:
            await self.transcription_service.transcribe_recording(audio, request)
        except Exception:
            # Reported through the channel
            return False
        return True

    def cleanup(self) -> None:
        if self.reporter is not None:
            self.reporter.close()
        if self.capture is not None:
            self.capture.release()


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    # Get log file path from config
    log_file_path = config.get('logging.file_path', 'data/logs/tabscribe.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Progress goes through rich; only problems here
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info(f"tabscribe {__version__} starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tabscribe",
        description="tabscribe - record an audio source and turn it into a Markdown transcript",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in defaults)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, INFO)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"tabscribe v{__version__}"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("devices", help="List capture targets")
    commands.add_parser("list", help="List delivered transcripts")

    record = commands.add_parser("record", help="Record a capture target, then transcribe it")
    record.add_argument("--device", default=DEFAULT_TARGET, help="Capture target id (default: system default input)")
    record.add_argument("--title", help="Transcript title (default: device name)")
    record.add_argument("--source", help="Source URL recorded in the transcript header")
    record.add_argument("--duration", type=float, help="Stop after this many seconds (default: until Ctrl+C)")

    transcribe = commands.add_parser("transcribe", help="Transcribe an existing audio file")
    transcribe.add_argument("file", help="WAV, FLAC or OGG file")
    transcribe.add_argument("--title", help="Transcript title (default: file name)")

    return parser


def main() -> None:
    """Main entry point for tabscribe."""
    args = build_parser().parse_args()

    try:
        server = Server(args.config, args.log_level)
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    ok = True
    try:
        server.init()
        if args.command == "devices":
            server.list_devices()
        elif args.command == "list":
            server.list_transcripts()
        elif args.command == "record":
            ok = asyncio.run(server.record(args.device, args.title, args.source, args.duration))
        elif args.command == "transcribe":
            ok = asyncio.run(server.transcribe_file(args.file, args.title))
    except KeyboardInterrupt:
        server.console.print("\n👋 Goodbye!")
    except TabscribeError as e:
        server.console.print(f"❌ Error: {escape(str(e))}", style="bold red")
        logger.error(f"Application error: {e}", exc_info=True)
        ok = False
    finally:
        server.cleanup()

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()

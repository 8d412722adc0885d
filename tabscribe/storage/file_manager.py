"""File management for delivered transcripts."""

import logging
from pathlib import Path
from typing import Any, Dict, List


logger = logging.getLogger(__name__)


class FileManager:
    """Delivery sink: persists finished transcript documents to a user-visible directory."""

    def __init__(self, output_dir: str = "./data/transcripts"):
        """Initialize file manager with output directory.

        Args:
            output_dir: Directory transcripts are written to
        """
        self.output_dir = Path(output_dir)

        # Create directory structure
        self._ensure_directories()

        logger.info(f"FileManager initialized with output_dir: {self.output_dir}")

    def _ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {self.output_dir}")

    def _unique_path(self, filename: str) -> Path:
        """Pick a path for ``filename`` that does not overwrite an existing file."""
        candidate = self.output_dir / filename
        stem, suffix = candidate.stem, candidate.suffix
        counter = 1
        while candidate.exists():
            candidate = self.output_dir / f"{stem} ({counter}){suffix}"
            counter += 1
        return candidate

    def deliver(self, filename: str, data: bytes) -> Path:
        """Save a document and return the path it was written to.

        Args:
            filename: Requested file name (already sanitized)
            data: Document bytes

        Returns:
            Full path to the saved file
        """
        file_path = self._unique_path(Path(filename).name)

        try:
            with open(file_path, 'wb') as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Error saving transcript {file_path}: {e}")
            raise

        logger.info(f"Transcript saved: {file_path} ({len(data)} bytes)")
        return file_path

    def list_transcripts(self) -> List[str]:
        """List delivered transcript file names, oldest first."""
        files = [p for p in self.output_dir.iterdir() if p.is_file() and p.suffix == '.md']
        files.sort(key=lambda p: p.stat().st_mtime)
        return [p.name for p in files]

    def get_storage_stats(self) -> Dict[str, Any]:
        """Get storage usage statistics."""
        total_size = 0
        transcript_count = 0
        for file_path in self.output_dir.iterdir():
            if file_path.is_file() and file_path.suffix == '.md':
                transcript_count += 1
                total_size += file_path.stat().st_size

        return {
            "total_size_bytes": total_size,
            "transcript_count": transcript_count,
            "output_directory": str(self.output_dir),
        }

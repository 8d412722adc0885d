"""Durable single-record store for the active recording session."""

import os
import json
import logging
import tempfile
from pathlib import Path
from typing import Optional

from ..models.session import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Keeps the one active Session in a JSON file so a restarted process can pick it up."""

    def __init__(self, path: str):
        """Initialize session store.

        Args:
            path: JSON file holding the session record
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"SessionStore initialized at: {self.path}")

    def get(self) -> Optional[Session]:
        """Load the stored session, or None if there is none or it is unreadable."""
        if not self.path.exists():
            return None

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return Session.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Discarding unreadable session record {self.path}: {e}")
            return None

    def set(self, session: Session) -> None:
        """Write the session record atomically."""
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".session-", suffix=".json")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(session.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"Session record saved: {session.target_id} (paused={session.paused})")

    def remove(self) -> None:
        """Delete the session record if present."""
        try:
            self.path.unlink()
            logger.debug("Session record removed")
        except FileNotFoundError:
            pass

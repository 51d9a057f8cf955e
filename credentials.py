"""Credential store for the messaging session.

Persists the opaque auth blob emitted by the network so a restart resumes
the session without re-pairing. One JSON file, replaced atomically.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

log = logging.getLogger(__name__)


class CredentialError(Exception):
    """Raised when session credentials cannot be persisted."""


def _atomic_write(path: Path, data: str) -> None:
    """Write to temp file then rename — atomic on POSIX."""
    tmp = path.with_suffix(".tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    tmp.replace(path)


class FileCredentialStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> dict | None:
        """Return the saved session, or None if there is none usable."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.warning("Unreadable credentials at %s, starting fresh: %s", self.path, e)
            return None
        if not isinstance(data, dict) or not data:
            log.warning("Credentials at %s are not a session object, ignoring", self.path)
            return None
        return data

    def save(self, session: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(self.path, json.dumps(session, ensure_ascii=False))
        except (OSError, TypeError, ValueError) as e:
            raise CredentialError(f"Cannot save credentials to {self.path}: {e}") from e
        log.debug("Credentials saved: %s", self.path)

    def clear(self) -> None:
        """Invalidate the stored session (after a remote logout)."""
        self.path.unlink(missing_ok=True)
        log.info("Credentials cleared: %s", self.path)

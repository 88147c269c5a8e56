"""
Session Store - Persists the session snapshot as JSON under data/.

Best-effort on both sides: a snapshot that fails to save (too large, disk
error) is logged and dropped, and a missing or unreadable file loads as None.
"""

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from . import config
from .errors import PersistenceError
from .models import SessionSnapshot


class SessionStore:
    def __init__(self, path: Optional[Path] = None, max_bytes: Optional[int] = None):
        self.path = Path(path) if path else config.SESSION_PATH
        self.max_bytes = config.SESSION_MAX_BYTES if max_bytes is None else max_bytes

    def save(self, snapshot: SessionSnapshot) -> None:
        """Write the snapshot. Never raises."""
        try:
            self._write(snapshot)
        except PersistenceError as e:
            print(f"  WARNING: {e}", file=sys.stderr)

    def _write(self, snapshot: SessionSnapshot) -> None:
        payload = {
            "saved_at": datetime.now().isoformat(),
            "session": snapshot.to_dict(),
        }
        text = json.dumps(payload, ensure_ascii=False)
        size = len(text.encode("utf-8"))
        if self.max_bytes and size > self.max_bytes:
            raise PersistenceError(
                f"Session too large to save ({size} bytes, limit {self.max_bytes})"
            )
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".tmp")
            tmp.write_text(text, encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            raise PersistenceError(f"Failed to save session: {e}") from e

    def load(self) -> Optional[SessionSnapshot]:
        """Return the saved snapshot, or None if absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            return SessionSnapshot.from_dict(payload["session"])
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            print(f"  WARNING: Failed to load saved session: {e}", file=sys.stderr)
            return None

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            print(f"  WARNING: Failed to clear saved session: {e}", file=sys.stderr)

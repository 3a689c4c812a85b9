"""Archive of finished update sessions, kept for audit and history queries.

Each target keeps a ``sessions.jsonl`` file with one frozen session per line,
so history queries ("last 10 sessions and outcomes") never need the
orchestrator.
"""

from __future__ import annotations

import json
from pathlib import Path

from genswap.models.session import UpdateSession
from genswap.store._files import append_line, exclusive


class SessionArchive:
    """Append-only archive of UpdateSessions for one target."""

    ARCHIVE_FILE = "sessions.jsonl"

    def __init__(self, store_dir: str | Path):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self.archive_path = self.store_dir / self.ARCHIVE_FILE

    def record(self, session: UpdateSession) -> None:
        """Archive a finished session."""
        if not session.is_terminal:
            raise ValueError(f"session {session.session_id} has no outcome yet")
        with exclusive(self.archive_path):
            append_line(self.archive_path, json.dumps(session.to_dict()))

    def get_history(self) -> list[UpdateSession]:
        """All archived sessions, oldest first. Unparseable lines are skipped."""
        if not self.archive_path.exists():
            return []
        sessions = []
        with open(self.archive_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    sessions.append(UpdateSession.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError, AttributeError):
                    continue
        return sessions

    def list_recent(self, limit: int = 10) -> list[UpdateSession]:
        """The *limit* most recent sessions, newest first."""
        return list(reversed(self.get_history()))[:limit]

    def get(self, session_id: str) -> UpdateSession | None:
        for session in self.get_history():
            if session.session_id == session_id:
                return session
        return None

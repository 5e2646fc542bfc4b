"""
Session store.

Serializes a ChatSession to a JSON file and back:

    {"history": [{"role", "content", "timestamp"}],
     "system_prompt": str | null, "active_model": str, "title": str | null}
"""

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ValidationError

from llmrelay.core.errors import (
    CorruptSessionError,
    SessionNotFoundError,
    StorageError,
    StoragePermissionError,
)
from llmrelay.core.logging import get_logger
from llmrelay.core.types import ChatSession, Role, Turn

logger = get_logger("session.store")


class TurnRecord(BaseModel):
    role: Role
    content: str
    timestamp: datetime


class SessionRecord(BaseModel):
    history: list[TurnRecord] = []
    system_prompt: str | None = None
    active_model: str
    title: str | None = None

    @classmethod
    def from_session(cls, session: ChatSession) -> "SessionRecord":
        return cls(
            history=[
                TurnRecord(role=t.role, content=t.content, timestamp=t.timestamp)
                for t in session.history
            ],
            system_prompt=session.system_prompt,
            active_model=session.active_model,
            title=session.title,
        )

    def to_session(self) -> ChatSession:
        return ChatSession(
            active_model=self.active_model,
            history=[Turn(t.role, t.content, t.timestamp) for t in self.history],
            system_prompt=self.system_prompt,
            title=self.title,
        )


@dataclass
class SessionInfo:
    """Saved session listing entry."""

    name: str
    modified: datetime
    model: str


def clean_filename(name: str) -> str:
    """Strip surrounding quotes and replace spaces with underscores."""
    cleaned = name.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    return cleaned.replace(" ", "_")


class SessionStore:
    """Reads and writes session files; one save or load at a time."""

    def __init__(self, sessions_dir: Path):
        self.sessions_dir = sessions_dir
        self._lock = threading.Lock()

    def path_for(self, name: str) -> Path:
        """Relative names live in the sessions directory; absolute paths are kept."""
        path = Path(clean_filename(name)).expanduser()
        if path.is_absolute():
            return path
        return self.sessions_dir / path

    def save(self, session: ChatSession, name: str) -> Path:
        """Write session atomically (temp file + replace)."""
        path = self.path_for(name)
        payload = SessionRecord.from_session(session).model_dump_json(indent=2)

        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".session-", suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(payload)
                    os.replace(tmp_name, path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except PermissionError as e:
                raise StoragePermissionError(f"Permission denied: {path}") from e
            except OSError as e:
                raise StorageError(f"Cannot write {path}: {e}") from e

        logger.info(f"Saved session ({len(session.history)} turns) to {path}")
        return path

    def load(self, name: str) -> ChatSession:
        """Read a session file.

        Raises:
            SessionNotFoundError: no such file
            StoragePermissionError: file not readable
            CorruptSessionError: not a valid session document
        """
        path = self.path_for(name)
        with self._lock:
            try:
                raw = path.read_text(encoding="utf-8")
            except FileNotFoundError as e:
                raise SessionNotFoundError(f"Session not found: {path}") from e
            except PermissionError as e:
                raise StoragePermissionError(f"Permission denied: {path}") from e
            except (OSError, UnicodeDecodeError) as e:
                raise StorageError(f"Cannot read {path}: {e}") from e

        try:
            record = SessionRecord.model_validate_json(raw)
        except ValidationError as e:
            raise CorruptSessionError(f"Corrupt session file {path}: {e.error_count()} error(s)") from e

        logger.info(f"Loaded session ({len(record.history)} turns) from {path}")
        return record.to_session()

    def list_sessions(self) -> list[SessionInfo]:
        """Saved sessions with modification time and model."""
        if not self.sessions_dir.is_dir():
            return []

        sessions = []
        for path in sorted(self.sessions_dir.iterdir()):
            if not path.is_file() or path.name.startswith("."):
                continue
            sessions.append(
                SessionInfo(
                    name=path.name,
                    modified=datetime.fromtimestamp(path.stat().st_mtime),
                    model=self._peek_model(path),
                )
            )
        return sessions

    def _peek_model(self, path: Path) -> str:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return "unknown"
        if not isinstance(data, dict):
            return "unknown"
        return str(data.get("active_model") or data.get("model") or "unknown")

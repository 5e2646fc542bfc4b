"""Mic file monitor - turns transcriptions written to a file into input lines."""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

from llmrelay.core.logging import get_logger
from llmrelay.interfaces.base import InputSource

logger = get_logger("interfaces.file_watch")


class FileWatchInput(InputSource):
    """Polls a file written by an external recorder.

    Content is emitted once it reads the same on two consecutive polls.
    Whitespace-only content is ignored and the same content is never
    emitted twice in a row.
    """

    name = "mic"
    primary = False

    def __init__(self, path: Path, poll_interval: float = 2.0, clear_on_start: bool = True):
        self.path = path
        self.poll_interval = poll_interval
        self.clear_on_start = clear_on_start
        self._candidate: str | None = None
        self._last_emitted: str | None = None

    async def lines(self) -> AsyncIterator[str]:
        if self.clear_on_start:
            self._remove_stale()

        while True:
            await asyncio.sleep(self.poll_interval)
            line = self.poll()
            if line is not None:
                yield line

    def poll(self) -> str | None:
        """Run one poll step; return text when new stable content is seen."""
        content = self._read()

        if content is None or not content.strip():
            self._candidate = None
            return None
        if content == self._last_emitted:
            self._candidate = None
            return None
        if content != self._candidate:
            # Still being written (or first sighting); wait for next poll
            self._candidate = content
            return None

        self._candidate = None
        self._last_emitted = content
        logger.info(f"New content in {self.path.name} ({len(content)} chars)")
        return content.strip()

    def _read(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read {self.path}: {e}")
            return None

    def _remove_stale(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove stale {self.path}: {e}")

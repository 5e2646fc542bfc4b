"""Busy indicator - marker files polled by the mic recorder."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from llmrelay.core.logging import get_logger

logger = get_logger("core.busy")


class BusyIndicator:
    """Write-only side-channel telling external tools a response is in flight.

    While held, ``act_file`` contains "busy". On release the act file is
    removed and ``ack_file`` gets "OK".
    """

    def __init__(self, act_file: Path | None = None, ack_file: Path | None = None):
        self.act_file = act_file
        self.ack_file = ack_file
        self._busy = False

    @property
    def is_busy(self) -> bool:
        return self._busy

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Assert busy for the duration of the block, cleared on every exit path."""
        if self._busy:
            # Nested hold: the outer one owns the release
            yield
            return

        self._busy = True
        self._write(self.act_file, "busy")
        try:
            yield
        finally:
            self._busy = False
            self._remove(self.act_file)
            self._write(self.ack_file, "OK")

    def _write(self, path: Path | None, content: str) -> None:
        if path is None:
            return
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to write {path}: {e}")

    def _remove(self, path: Path | None) -> None:
        if path is None:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")

"""
Interface protocol and common types.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class InputLine:
    """Candidate input line received from a source."""

    text: str
    source: str
    received_at: datetime = field(default_factory=datetime.now)


class InputSource(ABC):
    """Asynchronous producer of input lines."""

    name: str = "input"
    # The engine stops when the primary source is exhausted
    primary: bool = False

    @abstractmethod
    def lines(self) -> AsyncIterator[str]:
        """Yield input lines until the source is exhausted."""
        ...

    async def close(self) -> None:
        """Release resources held by the source."""


class OutputSink(ABC):
    """Where the engine and dispatcher write user-facing text."""

    @abstractmethod
    def info(self, text: str) -> None:
        ...

    @abstractmethod
    def warning(self, text: str) -> None:
        ...

    @abstractmethod
    def error(self, text: str) -> None:
        ...

    @abstractmethod
    def response(self, text: str) -> None:
        """Complete (non-streamed) assistant response."""
        ...

    @abstractmethod
    def stream_chunk(self, text: str) -> None:
        """Fragment of a streamed response."""
        ...

    @abstractmethod
    def stream_end(self, ok: bool = True) -> None:
        """Streamed response finished; ok=False when it was discarded."""
        ...

    @abstractmethod
    def notice(self, source: str, preview: str) -> None:
        """Announce a line arriving from a non-terminal source."""
        ...

    @abstractmethod
    def clear_screen(self) -> None:
        ...

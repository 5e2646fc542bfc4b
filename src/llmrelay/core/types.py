"""
Shared type definitions.

Conversation state and the transient units produced while streaming.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from llmrelay.core.errors import BackendError


class Role(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """One immutable history entry, identified by its index in history."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_llm_format(self) -> dict[str, Any]:
        """Convert to LLM API message format."""
        return {"role": self.role.value, "content": self.content}


@dataclass
class ChatSession:
    """Full conversational state owned by the session engine."""

    active_model: str
    history: list[Turn] = field(default_factory=list)
    system_prompt: str | None = None
    title: str | None = None

    def clear(self) -> None:
        """Drop history; system prompt and model survive."""
        self.history = []

    def last_system_prompt(self) -> str | None:
        """Content of the most recent system turn, if any."""
        for turn in reversed(self.history):
            if turn.role is Role.SYSTEM:
                return turn.content
        return None

    def pending_turns(self, prompt: str) -> list[Turn]:
        """Turns a query would add ahead of the assistant reply.

        The system prompt materializes as a turn only when a query is made
        and only if history does not already end up under the same prompt.
        """
        now = datetime.now()
        turns = []
        if self.system_prompt and self.last_system_prompt() != self.system_prompt:
            turns.append(Turn(Role.SYSTEM, self.system_prompt, now))
        turns.append(Turn(Role.USER, prompt, now))
        return turns

    def commit(self, turns: list[Turn]) -> None:
        """Append a completed exchange in one step."""
        self.history = [*self.history, *turns]

    def replace_with(self, other: "ChatSession") -> None:
        """Take over every field of another session (used by /load)."""
        self.history = list(other.history)
        self.system_prompt = other.system_prompt
        self.active_model = other.active_model
        self.title = other.title


class ChunkKind(Enum):
    TEXT = "text"
    END = "end"
    ERROR = "error"


@dataclass(frozen=True)
class StreamChunk:
    """Transient streaming unit; never persisted on its own."""

    kind: ChunkKind
    text: str = ""
    error: "BackendError | None" = None

    @classmethod
    def of(cls, text: str) -> "StreamChunk":
        return cls(ChunkKind.TEXT, text)

    @classmethod
    def end(cls) -> "StreamChunk":
        return cls(ChunkKind.END)

    @classmethod
    def failure(cls, error: "BackendError") -> "StreamChunk":
        return cls(ChunkKind.ERROR, error=error)

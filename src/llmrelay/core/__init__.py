"""
Core module - session engine, configuration, shared types.

Components:
- config: Settings management via pydantic-settings
- types: Shared data structures (Turn, ChatSession, StreamChunk)
- errors: Error taxonomy
- busy: Busy indicator side-channel
- engine: Single-writer session engine
- logging: Structured logging setup
"""

from llmrelay.core.config import Settings
from llmrelay.core.types import ChatSession, Role, StreamChunk, Turn

__all__ = ["Settings", "ChatSession", "Role", "StreamChunk", "Turn"]

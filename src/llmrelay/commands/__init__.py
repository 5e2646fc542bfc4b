"""Slash-command handling."""

from llmrelay.commands.dispatcher import CommandDispatcher, Dispatch, DispatchKind

__all__ = ["CommandDispatcher", "Dispatch", "DispatchKind"]

"""Session persistence - JSON session files and the completion wordlist."""

from llmrelay.session.store import SessionInfo, SessionStore
from llmrelay.session.wordlist import Wordlist

__all__ = ["SessionInfo", "SessionStore", "Wordlist"]

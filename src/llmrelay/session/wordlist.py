"""Vocabulary for input completion, one word per line in the config directory."""

from pathlib import Path

from llmrelay.core.errors import StorageError
from llmrelay.core.logging import get_logger

logger = get_logger("session.wordlist")


class Wordlist:
    """Words offered by the terminal completer; grown with /word."""

    def __init__(self, path: Path):
        self.path = path
        self._words: list[str] = []

    @property
    def words(self) -> list[str]:
        return list(self._words)

    def load(self) -> "Wordlist":
        """Read the file if present; an unreadable file leaves the list empty."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to load wordlist from {self.path}: {e}")
            return self

        self._words = [line.strip() for line in text.splitlines() if line.strip()]
        logger.debug(f"Loaded {len(self._words)} words from {self.path}")
        return self

    def add(self, word: str) -> bool:
        """Add and persist a word. Returns False if it was already present.

        Raises:
            StorageError: the wordlist file could not be written
        """
        if word in self._words:
            return False
        self._words.append(word)
        self.save()
        return True

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("\n".join(self._words), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e

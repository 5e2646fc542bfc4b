"""
Error taxonomy.

Backend, command and storage errors are reported to the user as a single
line and never end the process. Config and registry errors are fatal at
startup only.
"""


class LLMRelayError(Exception):
    """Base class for all llmrelay errors."""


# === Backend errors ===


class BackendError(LLMRelayError):
    """A model backend could not produce a response."""


class BackendNotFoundError(BackendError):
    """Model name does not resolve to any backend."""

    def __init__(self, model: str):
        super().__init__(f"Unknown model: {model}")
        self.model = model


class BackendTimeoutError(BackendError):
    """Backend call exceeded the configured duration."""


class TransportError(BackendError):
    """Network or provider API failure."""


class MalformedResponseError(BackendError):
    """Provider returned something that does not fit the response contract."""


# === Command errors ===


class CommandError(LLMRelayError):
    """Slash-command could not be applied."""


class UnknownCommandError(CommandError):
    def __init__(self, command: str):
        super().__init__(f"Unknown command: /{command}")
        self.command = command


class InvalidArgumentError(CommandError):
    pass


# === Storage errors ===


class StorageError(LLMRelayError):
    """Session file could not be read or written."""


class SessionNotFoundError(StorageError):
    pass


class StoragePermissionError(StorageError):
    pass


class CorruptSessionError(StorageError):
    pass


# === Startup errors ===


class ConfigError(LLMRelayError):
    """Configuration file or environment is malformed."""


class RegistryError(LLMRelayError):
    """Model registry could not be loaded."""

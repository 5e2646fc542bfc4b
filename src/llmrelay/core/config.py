"""
Configuration management.

Sources, highest priority first: constructor arguments, environment
variables (prefix LLMRELAY_), .env file, <config_dir>/config.yaml.
"""

import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from llmrelay.core.errors import ConfigError

CONFIG_FILE_NAME = "config.yaml"


class QuitPolicy(Enum):
    """What /quit does to an exchange that is still in flight."""

    FINISH = "finish"
    CANCEL = "cancel"


def default_config_dir() -> Path:
    """Config directory, honoring LLMRELAY_CONFIG_DIR and XDG_CONFIG_HOME."""
    override = os.getenv("LLMRELAY_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    xdg = os.getenv("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / "llmrelay"


def config_file_path() -> Path:
    return default_config_dir() / CONFIG_FILE_NAME


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LLMRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Locations
    config_dir: Path = Field(
        default_factory=default_config_dir, description="Config, history and sessions"
    )
    temp_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        description="Directory shared with the mic recorder (mic.md, act, ai_ack)",
    )

    # Model defaults
    default_model: str = Field(default="gemini-2.0-flash", description="Default model")
    stream: bool = Field(default=False, description="Stream responses by default")
    ollama_url: str = Field(
        default="http://localhost:11434/v1",
        description="Local LLM endpoint (OpenAI-compatible)",
    )

    # Session engine
    request_timeout: float = Field(default=120.0, gt=0, description="Backend call limit (s)")
    quit_policy: QuitPolicy = Field(
        default=QuitPolicy.FINISH, description="Finish or cancel in-flight exchange on /quit"
    )
    autosave: bool = Field(default=False, description="Save session on exit")
    user_prompt: str = Field(default="> ", description="Interactive prompt text")

    # Mic collaborator
    mic_command: str = Field(default="", description="Command that records and transcribes")
    mic_poll_interval: float = Field(default=2.0, gt=0, description="Mic file poll period (s)")

    log_level: str = Field(default="INFO", description="Log level for the log file")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=config_file_path()),
            file_secret_settings,
        )

    @property
    def sessions_dir(self) -> Path:
        return self.config_dir / "sessions"

    @property
    def history_file(self) -> Path:
        return self.config_dir / "history.txt"

    @property
    def wordlist_file(self) -> Path:
        return self.config_dir / "wordlist.txt"

    @property
    def log_file(self) -> Path:
        return self.config_dir / "llmrelay.log"

    @property
    def mic_file(self) -> Path:
        return self.temp_dir / "mic.md"

    @property
    def act_file(self) -> Path:
        return self.temp_dir / "act"

    @property
    def ack_file(self) -> Path:
        return self.temp_dir / "ai_ack"


def get_settings(**overrides: Any) -> Settings:
    """Load settings, turning malformed config into ConfigError."""
    try:
        return Settings(**overrides)
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed config file {config_file_path()}: {e}") from e
    except (ValueError, TypeError) as e:
        # pydantic ValidationError is a ValueError
        raise ConfigError(f"Invalid configuration: {e}") from e


def save_config_value(key: str, value: Any) -> Path:
    """Persist a single key in the YAML config file, keeping other keys."""
    path = config_file_path()
    data: dict[str, Any] = {}
    if path.exists():
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"Malformed config file {path}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        data = loaded or {}

    data[key] = value
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=True), encoding="utf-8")
    return path

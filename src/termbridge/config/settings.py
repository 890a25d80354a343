"""Configuration management for termbridge.

Loads settings from a YAML configuration file with environment variable
overrides (``TERMBRIDGE_`` prefix, ``__`` for nested sections). Supports
.env files.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings

from termbridge.protocol.codec import ProtocolVariant
from termbridge.pty.base import PtyStrategy
from termbridge.pty.process import DEFAULT_INPUT_QUEUE_SIZE

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/termbridge.yaml")


def default_command() -> list[str]:
    return ["cmd.exe"] if sys.platform == "win32" else ["bash"]


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=7681, ge=1, le=65535)
    max_clients: int = Field(default=0, ge=0, description="0 means unlimited")
    once: bool = Field(default=False, description="Serve one client, then exit")
    check_origin: bool = Field(default=False)


class TerminalConfig(BaseModel):
    command: list[str] = Field(default_factory=default_command)
    cwd: str | None = Field(default=None)
    credential: SecretStr | None = Field(default=None)
    writable: bool = Field(default=False)
    mouse: bool = Field(default=False, description="Accept mouse-reporting frames")
    pty_strategy: PtyStrategy = Field(default=PtyStrategy.AUTO)
    input_queue_size: int = Field(default=DEFAULT_INPUT_QUEUE_SIZE, gt=0)
    preferences: dict[str, Any] = Field(default_factory=dict)
    title: str | None = Field(default=None)

    @field_validator("command")
    @classmethod
    def _default_if_empty(cls, value: list[str]) -> list[str]:
        return value or default_command()

    @property
    def protocol_variant(self) -> ProtocolVariant:
        return ProtocolVariant.MOUSE if self.mouse else ProtocolVariant.PLAIN

    @property
    def preferences_json(self) -> str:
        return json.dumps(self.preferences)

    @property
    def credential_value(self) -> str | None:
        return self.credential.get_secret_value() if self.credential else None


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for termbridge.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "TERMBRIDGE_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML data arrives as init kwargs; the environment wins over it
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data: dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)

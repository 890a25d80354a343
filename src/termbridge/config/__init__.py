"""Configuration management for termbridge.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides.
"""

from termbridge.config.settings import (
    LoggingConfig,
    ServerConfig,
    Settings,
    TerminalConfig,
    load_settings,
)

__all__ = ["LoggingConfig", "ServerConfig", "Settings", "TerminalConfig", "load_settings"]

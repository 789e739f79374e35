"""Application settings loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "remote-exec" / "config.toml"


class Settings(BaseSettings):
    """All configuration is driven by ``REMOTE_EXEC_*`` environment variables."""

    # Host registry
    config_path: str = Field(default=str(DEFAULT_CONFIG_PATH))
    config_allow_missing: bool = False
    config_poll_interval_seconds: float = 1.0
    config_debounce_ms: int = 200

    # Telemetry / logging
    log_path: str = ""
    log_level: str = "info"

    # HTTP listener
    listen_host: str = "127.0.0.1"
    listen_port: int = 8080

    # API key guarding the HTTP surface (blank disables the check)
    api_key: str = ""

    # SSH execution
    default_timeout_ms: int = 60_000
    ready_timeout_seconds: float = 20.0
    ssh_max_workers: int = 16
    passphrase_env_prefix: str = "REMOTE_EXEC_PASSPHRASE_"
    credential_command_max_bytes: int = 8 * 1024

    # Upper bound for a single hook call; None or 0 disables the bound
    hook_timeout_seconds: Optional[float] = 10.0

    model_config = SettingsConfigDict(
        env_prefix="REMOTE_EXEC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Singleton – import this from anywhere
settings = Settings()

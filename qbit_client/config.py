"""
Client configuration loaded from the environment.
"""

from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Settings read from QBIT_* environment variables or a .env file."""

    # qBittorrent Web UI credentials (both empty = no login)
    username: str = ""
    password: str = Field("", repr=False)

    # Web UI address
    host: str = "localhost"
    port: int = Field(8080, ge=1, le=65535)
    use_https: bool = False
    verify_ssl: bool = True

    # Total per-request timeout in seconds, handed to aiohttp
    timeout: float = Field(30.0, gt=0)

    # Logging settings
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    log_file: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value!r}")
        return level

    model_config = SettingsConfigDict(
        env_prefix="QBIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

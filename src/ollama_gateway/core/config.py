"""Configuration management for the Ollama Gateway.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the OLLAMA_GATEWAY_
prefix, allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (OLLAMA_GATEWAY_* prefix)
2. .env file in the project root
3. Default values defined in GatewayConfig

Example .env file:
    OLLAMA_GATEWAY_OLLAMA_BASE_URL=http://gpu-box:11434
    OLLAMA_GATEWAY_STREAM_TIMEOUT=600
    OLLAMA_GATEWAY_ADMIN_TOKEN=change-me
    OLLAMA_GATEWAY_DATA_DIR=/var/lib/ollama-gateway

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Entry points (``ollama-gateway`` and ``ollama-gateway-chat``) read from it;
library code receives a config object explicitly so tests can build their own.

Usage Example
-------------
    from ollama_gateway.core.config import config

    print(config.ollama_base_url)
    print(config.projects_file)

Timeout Budgets
---------------
Two independent budgets exist because buffered and streaming generation have
very different legitimate durations:

- request_timeout: bound for non-streaming calls (the whole reply is awaited)
- stream_timeout: bound for each read on a streaming call; generation of a
  long answer can legitimately take minutes
- connect_timeout: shared bound for establishing the upstream connection

Directory Management
--------------------
The configuration creates ``data_dir`` on initialization. It holds
``projects.json``, the project/API-key registry read by
:class:`~ollama_gateway.core.access.ProjectRegistry`.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewayConfig(BaseSettings):
    """Main configuration for the Ollama Gateway.

    Values are loaded from environment variables with the OLLAMA_GATEWAY_
    prefix, with fallback to defaults defined here.

    Attributes
    ----------
    Upstream Settings:
        ollama_base_url : str
            Base URL of the generation engine (no trailing path)
        request_timeout : float
            Seconds allowed for a complete non-streaming upstream call
        stream_timeout : float
            Seconds allowed between reads on a streaming upstream call
        connect_timeout : float
            Seconds allowed to establish the upstream connection

    Access Settings:
        data_dir : Path
            Directory holding projects.json
        admin_token : str | None
            Bearer token for model-management routes (disabled when unset)

    Server Settings:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn (1024-65535)
        cors_origins : list[str]
            Allowed CORS origins
        log_level : Literal["DEBUG", "INFO", "WARNING", "ERROR"]
            Root log level used by the entry points

    Chat Client Settings:
        pacing_delay_ms : int
            Delay between successive fragment reveals in the chat client

    Examples
    --------
    Create a custom configuration:

        >>> custom = GatewayConfig(
        ...     ollama_base_url="http://127.0.0.1:11434",
        ...     stream_timeout=900,
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="OLLAMA_GATEWAY_",
        case_sensitive=False,
    )

    # Upstream engine
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Base URL of the Ollama generation engine",
    )
    request_timeout: float = Field(
        default=60.0,
        description="Timeout in seconds for non-streaming upstream calls",
        gt=0,
    )
    stream_timeout: float = Field(
        default=300.0,
        description="Per-read timeout in seconds for streaming upstream calls",
        gt=0,
    )
    connect_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for establishing the upstream connection",
        gt=0,
    )

    # Access control
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding projects.json",
    )
    admin_token: str | None = Field(
        default=None,
        description="Bearer token for model-management routes",
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=8080,
        description="Server port",
        ge=1024,
        le=65535,
    )
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    # Chat client
    pacing_delay_ms: int = Field(
        default=30,
        description="Delay between fragment reveals in the chat client",
        ge=0,
        le=1000,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create the data directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def projects_file(self) -> Path:
        """Path of the JSON project registry."""
        return self.data_dir / "projects.json"

    @property
    def pacing_delay(self) -> float:
        """Pacing delay in seconds."""
        return self.pacing_delay_ms / 1000.0


# Global configuration instance, loaded from OLLAMA_GATEWAY_* variables and .env.
config = GatewayConfig()

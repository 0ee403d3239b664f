"""Configuration management for the Bannercraft banner service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the BANNERCRAFT_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (BANNERCRAFT_* prefix)
2. .env file in the project root
3. Default values defined in BannerConfig

Example .env file:
    BANNERCRAFT_OPENAI_API_KEY=sk-...
    BANNERCRAFT_VISION_MODEL=gpt-4.1-mini
    BANNERCRAFT_DATABASE_PATH=data/bannercraft.db
    BANNERCRAFT_DESIGNS_DIR=public/designs

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from bannercraft.core.config import config

    print(config.vision_model)
    print(config.designs_dir)

Directory Management
--------------------
The configuration creates required directories on initialization:
- designs_dir: Generated panel images (served under ``designs_url_prefix``)
- the parent directory of database_path
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BannerConfig(BaseSettings):
    """Main configuration for the Bannercraft service.

    Values are loaded from environment variables with the BANNERCRAFT_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Generation API:
        openai_api_key : str | None
            API key for the OpenAI Responses API. Checked when a generation
            call is made, not at startup.
        openai_base_url : str | None
            Optional override of the API base URL (proxies, gateways)
        vision_model : str
            Model that drives the ``image_generation`` tool for each panel
        plan_model : str
            Model used for JSON layout plans
        request_timeout : float
            Per-request timeout in seconds

    Persistence:
        database_path : Path
            SQLite database file holding prompts, designs and iterations
        seed_default_prompts : bool
            Insert the packaged default prompts when the prompts table is empty

    Image store:
        designs_dir : Path
            Directory generated panel images are written to
        designs_url_prefix : str
            URL prefix the image store is served under
        storage_bucket : str
            Storage label recorded on completed designs and iterations

    Server:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn (1024-65535)
        log_level : str
            Level for the ``bannercraft`` logger
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BANNERCRAFT_",
        case_sensitive=False,
    )

    # Generation API
    openai_api_key: str | None = Field(
        default=None,
        repr=False,
        description="API key for the OpenAI Responses API",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Optional API base URL override",
    )
    vision_model: str = Field(
        default="gpt-4.1-mini",
        description="Model used with the image_generation tool for panel images",
    )
    plan_model: str = Field(
        default="gpt-4.1-mini",
        description="Model used for JSON layout plans",
    )
    request_timeout: float = Field(
        default=300.0,
        description="Per-request timeout in seconds",
        ge=1,
        le=900,
    )

    # Persistence
    database_path: Path = Field(
        default=Path("data/bannercraft.db"),
        description="SQLite database file",
    )
    seed_default_prompts: bool = Field(
        default=True,
        description="Seed packaged default prompts into an empty prompts table",
    )

    # Image store
    designs_dir: Path = Field(
        default=Path("public/designs"),
        description="Directory for generated panel images",
    )
    designs_url_prefix: str = Field(
        default="/designs",
        description="URL prefix the image store is served under",
    )
    storage_bucket: str = Field(
        default="local",
        description="Storage label recorded on completed records",
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level for the bannercraft logger",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.designs_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


# Global configuration instance, loaded from BANNERCRAFT_* variables and .env.
config = BannerConfig()

"""
Configuration for the dnd-archive import pipeline.

Values are read from the environment (optionally populated from a ``.env``
file) into a validated ``ArchiveConfig`` model.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("dnd-archive")


class ArchiveConfig(BaseModel):
    """Settings for the reference store, the wiki scraper and logging."""

    # Reference store
    store_url: str | None = Field(
        default=None,
        description="Base URL of the hosted store. When unset, a local JSON store is used."
    )
    store_key: str | None = Field(
        default=None,
        description="Public API key sent with every hosted store request"
    )
    access_token: str | None = Field(
        default=None,
        description="User access token for the hosted auth session"
    )
    data_dir: Path = Field(
        default=Path("dnd_data"),
        description="Directory for the local JSON store"
    )

    # Wiki scraping
    wiki_base: str = Field(
        default="http://dnd2024.wikidot.com",
        description="Primary wiki base URL"
    )
    wiki_fallback_domain: str = Field(
        default="dnd5e.wikidot.com",
        description="Mirror domain tried once when the primary domain fails"
    )
    cors_proxy: str = Field(
        default="https://api.allorigins.win/raw?url=",
        description="CORS relay prefix; the target URL is appended URL-encoded"
    )
    fetch_delay: float = Field(
        default=2.0,
        ge=0.0,
        description="Seconds to wait between successive wiki fetches of one reference kind"
    )
    fallback_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds to wait before retrying on the mirror domain"
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="HTTP timeout in seconds"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level for the CLI and tool server"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def primary_domain(self) -> str:
        """Host part of ``wiki_base``."""
        return self.wiki_base.split("://", 1)[-1].split("/", 1)[0]


_ENV_FIELDS = {
    "DND_ARCHIVE_STORE_URL": "store_url",
    "DND_ARCHIVE_STORE_KEY": "store_key",
    "DND_ARCHIVE_ACCESS_TOKEN": "access_token",
    "DND_ARCHIVE_DATA_DIR": "data_dir",
    "DND_ARCHIVE_WIKI_BASE": "wiki_base",
    "DND_ARCHIVE_CORS_PROXY": "cors_proxy",
    "DND_ARCHIVE_FETCH_DELAY": "fetch_delay",
    "DND_ARCHIVE_HTTP_TIMEOUT": "http_timeout",
    "DND_ARCHIVE_LOG_LEVEL": "log_level",
}


def load_config(env_file: str | Path | None = None) -> ArchiveConfig:
    """Build an ``ArchiveConfig`` from the environment.

    Args:
        env_file: Optional path to a ``.env`` file. Defaults to searching
            the working directory.

    Returns:
        Validated configuration. Unset variables keep their defaults.
    """
    if not load_dotenv(env_file):
        logger.debug("No .env file found, using process environment only")

    values = {
        field: os.environ[var]
        for var, field in _ENV_FIELDS.items()
        if os.environ.get(var)
    }
    return ArchiveConfig(**values)

"""
Runtime configuration — where the cache lives and how to reach Feedbin.

Settings come from ``<home>/config.yaml`` first, then environment
variables override them:

    FEEDBIN_EMAIL, FEEDBIN_PASSWORD   credentials (required for sync)
    FEEDBIN_API_BASE_URL              defaults to https://api.feedbin.com/v2
    FEEDBIN_DB_PATH                   defaults to <home>/feedsync.db
    FEEDBIN_SEARCH_MODE               like | fts
    FEEDBIN_TIMEOUT                   per-request timeout in seconds
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel

from . import FEEDSYNC_HOME
from .errors import ConfigError
from .models import SearchMode

logger = logging.getLogger("feedsync.config")

DEFAULT_API_BASE_URL = "https://api.feedbin.com/v2"
DEFAULT_DB_NAME = "feedsync.db"
CONFIG_FILE = "config.yaml"

_ENV_FIELDS = {
    "FEEDBIN_EMAIL": "email",
    "FEEDBIN_PASSWORD": "password",
    "FEEDBIN_API_BASE_URL": "api_base_url",
    "FEEDBIN_DB_PATH": "db_path",
    "FEEDBIN_SEARCH_MODE": "search_mode",
    "FEEDBIN_TIMEOUT": "timeout",
}


class FeedsyncConfig(BaseModel):
    """Complete feedsync configuration."""

    home: Path = Path(FEEDSYNC_HOME)
    email: str = ""
    password: str = ""
    api_base_url: str = DEFAULT_API_BASE_URL
    db_path: Optional[Path] = None
    search_mode: SearchMode = SearchMode.LIKE
    per_page: int = 20
    timeout: float = 10.0

    @property
    def database(self) -> Path:
        """Resolved database path."""
        if self.db_path is not None:
            return self.db_path.expanduser()
        return self.home.expanduser() / DEFAULT_DB_NAME

    def validate_credentials(self) -> None:
        """Check everything needed to talk to the remote service.

        Raises:
            ConfigError: On missing credentials or a malformed base URL.
        """
        if not self.email:
            raise ConfigError("validate config", "FEEDBIN_EMAIL is required")
        if not self.password:
            raise ConfigError("validate config", "FEEDBIN_PASSWORD is required")
        if not self.api_base_url:
            raise ConfigError("validate config", "api_base_url is required")
        if self.api_base_url.endswith("/"):
            raise ConfigError(
                "validate config",
                f"api_base_url must not end with '/': {self.api_base_url}",
            )
        if self.per_page < 1:
            raise ConfigError("validate config", "per_page must be at least 1")

    def save(self) -> Path:
        """Write non-secret settings back to ``config.yaml``."""
        home = self.home.expanduser()
        home.mkdir(parents=True, exist_ok=True)
        config_file = home / CONFIG_FILE
        data = self.model_dump(mode="json", exclude={"home", "password"})
        config_file.write_text(
            yaml.dump(data, default_flow_style=False), encoding="utf-8"
        )
        return config_file


def load_config(home: Optional[Path] = None) -> FeedsyncConfig:
    """Load configuration from disk and the environment.

    Args:
        home: Feedsync home directory. Defaults to ``FEEDSYNC_HOME``.

    Returns:
        FeedsyncConfig with environment overrides applied.

    Raises:
        ConfigError: If a setting has an invalid value.
    """
    home_path = (home or Path(FEEDSYNC_HOME)).expanduser()
    data: dict = {}

    config_file = home_path / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            logger.warning("Failed to load config %s: %s", config_file, exc)
            data = {}
        if not isinstance(data, dict):
            logger.warning("Ignoring config %s: not a mapping", config_file)
            data = {}

    for env_name, field in _ENV_FIELDS.items():
        value = os.environ.get(env_name, "").strip()
        if value:
            data[field] = value.lower() if field == "search_mode" else value

    data["home"] = home_path
    try:
        return FeedsyncConfig(**data)
    except ValueError as exc:
        raise ConfigError("load config", str(exc)) from exc

"""YAML configuration with secrets taken from the environment."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError
from .models import FilterItem, SearchQuery, parse_filter

LOGGER = logging.getLogger(__name__)


class CianSettings(BaseModel):
    search_type: str = "flatsale"
    search_query: Dict[str, FilterItem] = Field(default_factory=dict)
    max_cell_size_meters: float = Field(default=1000.0, gt=0)
    max_workers_collect_ids: int = Field(default=10, gt=0)
    max_workers_collect_offers: int = Field(default=5, gt=0)

    @field_validator("search_query", mode="before")
    @classmethod
    def _parse_query(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("search_query must be a mapping")
        return {key: parse_filter(item) for key, item in value.items()}

    def search(self) -> SearchQuery:
        return SearchQuery(search_type=self.search_type, filters=self.search_query)


class CaptchaSettings(BaseModel):
    api_key: Optional[str] = None
    max_wait: float = Field(default=180.0, gt=0)
    poll_interval: float = Field(default=5.0, ge=0)


class DatabaseSettings(BaseModel):
    dsn: Optional[str] = None


class HttpSettings(BaseModel):
    timeout: float = Field(default=20.0, gt=0)
    proxy: Optional[str] = None


class Settings(BaseModel):
    cian: CianSettings = Field(default_factory=CianSettings)
    captcha: CaptchaSettings = Field(default_factory=CaptchaSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)


def load_settings(path: str | Path, *, env_file: Optional[str | Path] = None) -> Settings:
    """Read ``path`` and fill missing secrets from ``ANTICAPTCHA_KEY`` / ``PG_DSN``."""
    load_dotenv(env_file)
    config_path = Path(path)
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigError(f"can't open config file: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"can't parse config file: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("config must be a mapping")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid config {config_path}: {exc}") from exc

    if not settings.captcha.api_key:
        settings.captcha.api_key = os.getenv("ANTICAPTCHA_KEY")
    if not settings.database.dsn:
        settings.database.dsn = os.getenv("PG_DSN")
    LOGGER.debug(
        "Loaded config %s (search_type=%s, filters=%d)",
        config_path,
        settings.cian.search_type,
        len(settings.cian.search_query),
    )
    return settings

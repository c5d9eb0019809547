"""
Configuration loading: YAML file validated into pydantic models, with
environment overrides.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from .models import Source


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


class HttpSettings(BaseModel):
    timeout: float = 30.0
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    user_agent: str = "NewsScraper/1.0 (+https://example.org/bot)"


class ScrapingSettings(BaseModel):
    """Tunables for fan-out and candidate selection."""

    source_concurrency: int = Field(default=4, ge=1)
    extraction_concurrency: int = Field(default=4, ge=1)
    over_fetch_multiplier: float = Field(default=2.0, ge=1.0)
    scan_multiplier: float = Field(default=3.0, ge=1.0)
    default_articles_per_source: int = Field(default=3, ge=1)


class ExtractionSettings(BaseModel):
    min_content_chars: int = 100
    min_fallback_chars: int = 40
    min_title_chars: int = 5
    min_paragraph_chars: int = 30
    max_content_chars: int = 100_000


class SourceConfig(BaseModel):
    name: str
    rss_url: str
    domain: str = ""
    respect_robots_txt: bool = True
    delay_between_requests: int = 1000
    user_agent: Optional[str] = None
    timeout_ms: int = 30000
    enabled: bool = True

    def to_source(self, default_user_agent: str) -> Source:
        data = self.model_dump(exclude={"user_agent"})
        return Source(user_agent=self.user_agent or default_user_agent, **data)


class ScheduleConfig(BaseModel):
    name: str
    sources: List[str]
    articles_per_source: int = Field(default=3, ge=1)
    cron: Optional[str] = None
    interval: Optional[Dict[str, int]] = None

    @model_validator(mode="after")
    def _has_trigger(self) -> "ScheduleConfig":
        if not self.cron and not self.interval:
            raise ValueError(f"Schedule '{self.name}' needs 'cron' or 'interval'")
        return self


class Settings(BaseModel):
    db_path: str = "scraper.db"
    log_level: str = "INFO"
    scheduler_timezone: str = "UTC"
    scheduler_persistence: bool = False
    scheduler_db_url: str = "sqlite:///scheduler_jobs.db"
    http: HttpSettings = Field(default_factory=HttpSettings)
    scraping: ScrapingSettings = Field(default_factory=ScrapingSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    sources: List[SourceConfig] = Field(default_factory=list)
    schedules: List[ScheduleConfig] = Field(default_factory=list)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def configured_sources(self) -> List[Source]:
        return [s.to_source(self.http.user_agent) for s in self.sources]


_ENV_OVERRIDES = {
    "SCRAPER_DB_PATH": "db_path",
    "LOG_LEVEL": "log_level",
    "SCHEDULER_TIMEZONE": "scheduler_timezone",
}


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Load settings from YAML, then apply environment overrides."""
    load_dotenv()
    path = Path(config_path or os.getenv("SCRAPER_CONFIG", DEFAULT_CONFIG_PATH))

    data: Dict[str, Any] = {}
    if path.exists():
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        logger.debug(f"Loaded configuration from {path}")
    else:
        logger.warning(f"Config file not found: {path}, using defaults")

    for env_key, field in _ENV_OVERRIDES.items():
        value = os.getenv(env_key)
        if value:
            data[field] = value

    return Settings.model_validate(data)

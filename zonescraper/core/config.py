"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes"}


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    google_api_key: str
    database_url: str
    max_pages: int = 3
    zone_config_ttl_seconds: float = 300.0
    zone_delay_ms: int = 2000
    max_results_per_zone: int = 100
    extract_emails: bool = True
    max_concurrent_jobs: int = 4
    detail_batch_size: int = 10
    enrich_request_timeout: int = 10
    enrich_use_js_renderer: bool = True


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_api_key = os.getenv("GOOGLE_API_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not google_api_key:
        logger.warning("GOOGLE_API_KEY is not configured; Google Places requests will fail.")

    return Settings(
        google_api_key=google_api_key,
        database_url=database_url,
        max_pages=int(os.getenv("WORKER_MAX_PAGES", "3")),
        zone_config_ttl_seconds=float(os.getenv("ZONE_CONFIG_TTL_SECONDS", "300")),
        zone_delay_ms=int(os.getenv("SCRAPE_ZONE_DELAY_MS", "2000")),
        max_results_per_zone=int(os.getenv("SCRAPE_MAX_RESULTS", "100")),
        extract_emails=_env_flag("SCRAPE_EXTRACT_EMAILS", "true"),
        max_concurrent_jobs=int(os.getenv("SCRAPE_MAX_CONCURRENT_JOBS", "4")),
        detail_batch_size=int(os.getenv("DETAIL_BATCH_SIZE", "10")),
        enrich_request_timeout=int(os.getenv("ENRICH_REQUEST_TIMEOUT", "10")),
        enrich_use_js_renderer=_env_flag("ENRICH_USE_JS_RENDERER", "true"),
    )

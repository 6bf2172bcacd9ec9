"""Configuration helpers and Settings container.

This module provides a small `Settings` dataclass and `get_settings` which
reads the environment (after loading `.env` from the project root) and
validates the cache windows and concurrency limits.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging
import os

from dotenv import load_dotenv

# Explicitly load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(PROJECT_ROOT / ".env")


@dataclass(frozen=True)
class Settings:
    """Container for engine configuration read from the environment.

    Attributes:
        mongo_uri: MongoDB connection URI for the survey data store.
        mongo_db: Target MongoDB database name.
        freshness_minutes: Age after which cached aggregates are recomputed
            synchronously.
        staleness_minutes: Age after which cached aggregates are still served
            but refreshed in the background.
        survey_concurrency: Max number of surveys fetched/normalized at once.
        refresh_timeout_seconds: Deadline for one background refresh.
        page_size: Rows requested per `get_survey_data` page.
        aggregation_chunk_size: Rows per chunk when building the grouping frame.
        cache_max_entries: LRU bound for the computation cache.
        cache_max_mb: Estimated memory bound for the computation cache.
        log_level: Root logging level.
    """
    mongo_uri: str
    mongo_db: str
    freshness_minutes: float = 30.0
    staleness_minutes: float = 5.0
    survey_concurrency: int = 3
    refresh_timeout_seconds: float = 120.0
    page_size: int = 5000
    aggregation_chunk_size: int = 1000
    cache_max_entries: int = 50
    cache_max_mb: float = 50.0
    log_level: int = logging.INFO


def _env_number(name: str, default: float, cast: type = float, minimum: float = 0) -> float:
    """Read a numeric environment variable, raising a readable error on junk."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return cast(default)
    try:
        value = cast(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got {value}")
    return value


def get_settings() -> Settings:
    """Read environment variables and return a frozen `Settings` object.

    Raises:
        RuntimeError: if a numeric variable cannot be parsed, is out of range,
            or `STALENESS_MINUTES` is not shorter than `FRESHNESS_MINUTES`.
    """
    mongo_uri = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    mongo_db = os.getenv("MONGO_DB", "benchmarks")

    freshness = _env_number("FRESHNESS_MINUTES", 30.0)
    staleness = _env_number("STALENESS_MINUTES", 5.0)
    if staleness >= freshness:
        raise RuntimeError(
            "STALENESS_MINUTES must be shorter than FRESHNESS_MINUTES "
            f"(got {staleness} >= {freshness})."
        )

    level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise RuntimeError(f"LOG_LEVEL must be a logging level name, got {level_name!r}")

    return Settings(
        mongo_uri=mongo_uri,
        mongo_db=mongo_db,
        freshness_minutes=freshness,
        staleness_minutes=staleness,
        survey_concurrency=int(_env_number("SURVEY_CONCURRENCY", 3, int, minimum=1)),
        refresh_timeout_seconds=_env_number("REFRESH_TIMEOUT_SECONDS", 120.0),
        page_size=int(_env_number("PAGE_SIZE", 5000, int, minimum=1)),
        aggregation_chunk_size=int(_env_number("AGGREGATION_CHUNK_SIZE", 1000, int, minimum=1)),
        cache_max_entries=int(_env_number("CACHE_MAX_ENTRIES", 50, int, minimum=1)),
        cache_max_mb=_env_number("CACHE_MAX_MB", 50.0),
        log_level=level,
    )

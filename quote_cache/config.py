"""Centralized configuration loaded from .env.

This module provides a single place to read environment variables needed by the
quote cache: database credentials, backing store selection, provider API keys
and the refresh/rate-limit tuning knobs. It uses python-dotenv to load a
`.env` file colocated with the package, and exposes simple accessors.

Environment Variables
- DB_NAME, DB_USER, DB_PASS/DB_PASSWORD, DB_HOST, DB_PORT, DB_POOL_MAX
- CACHE_BACKEND, QUEUE_BACKEND: memory | postgres | redis
- REDIS_URL, CACHE_RETENTION_SECONDS
- FINNHUB_API_KEY, ALPHA_VANTAGE_API_KEY, PRIMARY_PROVIDER, HTTP_TIMEOUT_SECONDS
- REFRESH_WORKER_INTERVAL_MS, CALL_INTERVAL_MS
- BACKOFF_INITIAL_SECONDS, BACKOFF_MAX_SECONDS
- FAST_TTL_SECONDS, SLOW_TTL_SECONDS
- FAST_STALE_THRESHOLD_SECONDS, SLOW_STALE_THRESHOLD_SECONDS
- MARKET_HOURS_GATING, RESOLVER_MAX_WORKERS, START_REFRESH_WORKER
- TICKER_SOURCES_PATH: JSON file mapping tickers to providers
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional
from dotenv import load_dotenv

# Load .env next to this file so it works regardless of CWD
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), ".env"))

logger = logging.getLogger(__name__)

DEFAULT_TICKER_SOURCES_PATH = os.path.join(os.path.dirname(__file__), "data", "ticker_sources.json")

_BACKENDS = ("memory", "postgres", "redis")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return a sanitized environment variable value.

    Parameters
    ----------
    name : str
        Variable name to read from the environment.
    default : Optional[str]
        Default value to use if the variable is missing or empty after sanitation.

    Returns
    -------
    Optional[str]
        Trimmed value with one level of wrapping quotes removed, or ``default``.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip()
    if (len(v) >= 2) and ((v[0] == '"' and v[-1] == '"') or (v[0] == "'" and v[-1] == "'")):
        v = v[1:-1]
    v = v.strip()
    return v if v != "" else default


def _env_int(name: str, default: int) -> int:
    """Integer variant of :func:`_env`; malformed values fall back to ``default``."""
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[config] %s=%r is not an integer; using %d", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _env_backend(name: str) -> str:
    value = (_env(name, "memory") or "memory").lower()
    if value not in _BACKENDS:
        logger.warning("[config] %s=%r is not one of %s; using memory", name, value, _BACKENDS)
        return "memory"
    return value


@dataclass(frozen=True)
class DatabaseSettings:
    """Typed container for database connection settings."""
    name: Optional[str]
    user: Optional[str]
    password: Optional[str]
    host: Optional[str]
    port: Optional[str]
    pool_max: int = 10


@dataclass(frozen=True)
class BackendSettings:
    """Which store backs the cache and the refresh queue."""
    cache_backend: str
    queue_backend: str
    redis_url: str
    cache_retention_seconds: int


@dataclass(frozen=True)
class ProviderSettings:
    """Upstream provider credentials and HTTP behavior."""
    finnhub_api_key: Optional[str]
    alpha_vantage_api_key: Optional[str]
    primary_provider: str
    http_timeout_seconds: int


@dataclass(frozen=True)
class RefreshSettings:
    """Refresh worker cadence, rate limiting and staleness thresholds."""
    worker_interval_ms: int = 2000
    call_interval_ms: int = 2000
    backoff_initial_seconds: int = 2
    backoff_max_seconds: int = 60
    fast_ttl_seconds: int = 300
    slow_ttl_seconds: int = 2340
    fast_stale_threshold_seconds: int = 300
    # 20 Alpha Vantage calls/day over 2 tickers = 10 per ticker per
    # 6.5h session (23400s) -> one call every 2340s.
    slow_stale_threshold_seconds: int = 2340
    market_hours_gating: bool = True
    resolver_max_workers: int = 8
    start_refresh_worker: bool = True


def get_db_settings() -> DatabaseSettings:
    """Return database settings from environment.

    Returns
    -------
    DatabaseSettings
        Dataclass with fields name, user, password, host, port (all optional strings)
        and the connection pool ceiling.
    """
    return DatabaseSettings(
        name=_env("DB_NAME"),
        user=_env("DB_USER"),
        password=_env("DB_PASS") or _env("DB_PASSWORD"),  # support both names
        host=_env("DB_HOST"),
        port=_env("DB_PORT"),
        pool_max=_env_int("DB_POOL_MAX", 10),
    )


def get_backend_settings() -> BackendSettings:
    """Return the cache/queue backend selection (memory when unset)."""
    return BackendSettings(
        cache_backend=_env_backend("CACHE_BACKEND"),
        queue_backend=_env_backend("QUEUE_BACKEND"),
        redis_url=_env("REDIS_URL", "redis://localhost:6379/0"),
        cache_retention_seconds=_env_int("CACHE_RETENTION_SECONDS", 0),
    )


def get_provider_settings() -> ProviderSettings:
    """Return provider API keys and HTTP settings.

    Missing keys are returned as ``None``; the fetchers turn that into a
    ``ConfigError`` at call time rather than failing at startup.
    """
    return ProviderSettings(
        finnhub_api_key=_env("FINNHUB_API_KEY"),
        alpha_vantage_api_key=_env("ALPHA_VANTAGE_API_KEY"),
        primary_provider=(_env("PRIMARY_PROVIDER", "finnhub") or "finnhub").lower(),
        http_timeout_seconds=_env_int("HTTP_TIMEOUT_SECONDS", 10),
    )


def get_refresh_settings() -> RefreshSettings:
    """Return refresh worker and staleness settings from environment."""
    defaults = RefreshSettings()
    return RefreshSettings(
        worker_interval_ms=_env_int("REFRESH_WORKER_INTERVAL_MS", defaults.worker_interval_ms),
        call_interval_ms=_env_int("CALL_INTERVAL_MS", defaults.call_interval_ms),
        backoff_initial_seconds=_env_int("BACKOFF_INITIAL_SECONDS", defaults.backoff_initial_seconds),
        backoff_max_seconds=_env_int("BACKOFF_MAX_SECONDS", defaults.backoff_max_seconds),
        fast_ttl_seconds=_env_int("FAST_TTL_SECONDS", defaults.fast_ttl_seconds),
        slow_ttl_seconds=_env_int("SLOW_TTL_SECONDS", defaults.slow_ttl_seconds),
        fast_stale_threshold_seconds=_env_int("FAST_STALE_THRESHOLD_SECONDS", defaults.fast_stale_threshold_seconds),
        slow_stale_threshold_seconds=_env_int("SLOW_STALE_THRESHOLD_SECONDS", defaults.slow_stale_threshold_seconds),
        market_hours_gating=_env_bool("MARKET_HOURS_GATING", defaults.market_hours_gating),
        resolver_max_workers=_env_int("RESOLVER_MAX_WORKERS", defaults.resolver_max_workers),
        start_refresh_worker=_env_bool("START_REFRESH_WORKER", defaults.start_refresh_worker),
    )


def load_ticker_sources(path: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    """Load the ticker -> provider mapping.

    Parameters
    ----------
    path : Optional[str]
        JSON file to read. Defaults to ``TICKER_SOURCES_PATH`` or the packaged
        ``data/ticker_sources.json``.

    Returns
    -------
    dict[str, dict]
        Mapping keyed by uppercase ticker. A missing or malformed file yields an
        empty mapping (every ticker then routes to the primary provider).
    """
    config_path = path or _env("TICKER_SOURCES_PATH", DEFAULT_TICKER_SOURCES_PATH)
    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except FileNotFoundError:
        logger.warning("[config] ticker sources file not found: %s", config_path)
        return {}
    except (OSError, json.JSONDecodeError) as e:
        logger.error("[config] unable to read ticker sources %s: %s", config_path, e)
        return {}

    if not isinstance(raw, dict):
        logger.error("[config] ticker sources must be a JSON object: %s", config_path)
        return {}
    sources: Dict[str, Dict[str, Any]] = {}
    for ticker, record in raw.items():
        if not isinstance(ticker, str) or not ticker.strip():
            continue
        if not isinstance(record, dict):
            logger.warning("[config] ignoring non-object record for ticker=%s", ticker)
            continue
        sources[ticker.strip().upper()] = record
    return sources

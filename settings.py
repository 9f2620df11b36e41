from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


_GEONAMES_USER_ENV = "GEONAMES_USERNAME"
_GEONAMES_SEARCH_ENV = "GEONAMES_SEARCH_URL"
_GEONAMES_NEARBY_ENV = "GEONAMES_NEARBY_URL"
_GEOAPIFY_KEY_ENV = "GEOAPIFY_API_KEY"
_GEOAPIFY_URL_ENV = "GEOAPIFY_BASE_URL"
_PURPLEAIR_KEY_ENV = "PURPLEAIR_API_KEY"
_PURPLEAIR_URL_ENV = "PURPLEAIR_BASE_URL"
_HTTP_TIMEOUT_ENV = "HTTP_TIMEOUT_SECONDS"
_MAX_ROWS_ENV = "AUTOCOMPLETE_MAX_ROWS"
_MIN_LENGTH_ENV = "AUTOCOMPLETE_MIN_LENGTH"
_DEBOUNCE_ENV = "AUTOCOMPLETE_DEBOUNCE_MS"
_RADIUS_ENV = "DEFAULT_RADIUS_MILES"
_CONCURRENCY_ENV = "PIPELINE_CONCURRENCY"
_WORKER_COUNT_ENV = "FETCH_WORKER_COUNT"
_SUPPORT_EMAIL_ENV = "SUPPORT_EMAIL"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    geonames_username: str
    geonames_search_url: str
    geonames_nearby_url: str
    geoapify_api_key: str
    geoapify_base_url: str
    purpleair_api_key: str
    purpleair_base_url: str
    http_timeout: float
    autocomplete_max_rows: int
    autocomplete_min_length: int
    autocomplete_debounce_ms: int
    default_radius_miles: float
    pipeline_concurrency: int
    fetch_workers: int
    support_email: str
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_url_env(name: str, default: str) -> str:
    return _read_str_env(name, default).rstrip("/")


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        geonames_username=_read_str_env(_GEONAMES_USER_ENV, "codap"),
        geonames_search_url=_read_url_env(
            _GEONAMES_SEARCH_ENV, "https://secure.geonames.org/search"
        ),
        geonames_nearby_url=_read_url_env(
            _GEONAMES_NEARBY_ENV, "https://secure.geonames.org/findNearbyPlaceNameJSON"
        ),
        geoapify_api_key=_read_str_env(_GEOAPIFY_KEY_ENV, ""),
        geoapify_base_url=_read_url_env(
            _GEOAPIFY_URL_ENV, "https://api.geoapify.com/v1/geocode"
        ),
        purpleair_api_key=_read_str_env(_PURPLEAIR_KEY_ENV, ""),
        purpleair_base_url=_read_url_env(_PURPLEAIR_URL_ENV, "https://api.purpleair.com/v1"),
        http_timeout=_read_positive_float(_HTTP_TIMEOUT_ENV, 30.0),
        autocomplete_max_rows=_read_positive_int(_MAX_ROWS_ENV, 5),
        autocomplete_min_length=_read_positive_int(_MIN_LENGTH_ENV, 3),
        autocomplete_debounce_ms=_read_positive_int(_DEBOUNCE_ENV, 800),
        default_radius_miles=_read_positive_float(_RADIUS_ENV, 10.0),
        pipeline_concurrency=_read_positive_int(_CONCURRENCY_ENV, 1),
        fetch_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        support_email=_read_str_env(_SUPPORT_EMAIL_ENV, "puple.air.codap.support@asu.edu"),
        log_level=_read_log_level("INFO"),
    )

"""Application configuration helpers.

Every setting comes from the environment (optionally via a local ``.env``).
The spreadsheet tabs are configured as ``SHEET_SOURCES`` in the form
``Name:handle,Name:handle``; the handle is appended to ``SHEET_CSV_BASE_URL``.
"""

import logging
import math
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv

from kioskmap.models import SourceDescriptor

logger = logging.getLogger(__name__)

DEFAULT_CSV_BASE_URL = (
    "https://docs.google.com/spreadsheets/d/e/"
    "2PACX-1vRRLfaWpmwj_Hl2kHFkbAjgJiypqi4CNidmKqRyUqmdRNpVKDZNIeWU9-Vg0VCUHA0YhPtNXJFIrKOr"
    "/pub?output=csv&gid="
)
DEFAULT_SOURCES = "Yamila:1090663139,Romina:822617376,Gisela:1787134852,Fabiana:1588954480,Anabella:2145568967"


class ConfigError(RuntimeError):
    """Raised when configuration is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    sheet_csv_base_url: str
    sources: Tuple[SourceDescriptor, ...]
    api_key: str = ""
    cache_ttl_seconds: float = 300.0
    request_timeout: float = 10.0
    max_workers: int = 5
    port: int = 8080
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_requests: int = 100


def parse_sources(raw: str) -> Tuple[SourceDescriptor, ...]:
    """Parse ``Name:handle`` pairs, keeping their configured order."""
    sources = []
    seen = set()
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, sep, handle = chunk.partition(":")
        name, handle = name.strip(), handle.strip()
        if not sep or not name or not handle:
            raise ConfigError(f"SHEET_SOURCES entry {chunk!r} must look like 'Name:handle'.")
        if name in seen:
            raise ConfigError(f"SHEET_SOURCES lists {name!r} more than once.")
        seen.add(name)
        sources.append(SourceDescriptor(display_name=name, source_handle=handle))
    if not sources:
        raise ConfigError("SHEET_SOURCES must name at least one spreadsheet tab.")
    return tuple(sources)


def _get_number(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        value = cast(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be numeric, got {raw!r}.") from exc
    if not math.isfinite(value) or value <= 0:
        raise ConfigError(f"{name} must be a positive finite number, got {raw!r}.")
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load, validate and cache settings to avoid repeated env lookups."""
    load_dotenv()

    sheet_csv_base_url = os.getenv("SHEET_CSV_BASE_URL") or DEFAULT_CSV_BASE_URL
    sources = parse_sources(os.getenv("SHEET_SOURCES") or DEFAULT_SOURCES)
    api_key = os.getenv("API_KEY", "")

    if not api_key:
        logger.warning("API_KEY is not configured; every /api request will be rejected.")

    return Settings(
        sheet_csv_base_url=sheet_csv_base_url,
        sources=sources,
        api_key=api_key,
        cache_ttl_seconds=_get_number("CACHE_TTL_SECONDS", "300", float),
        request_timeout=_get_number("SHEETS_REQUEST_TIMEOUT", "10", float),
        max_workers=_get_number("SHEETS_MAX_WORKERS", "5", int),
        port=_get_number("PORT", "8080", int),
        rate_limit_window_seconds=_get_number("RATE_LIMIT_WINDOW_SECONDS", "60", float),
        rate_limit_max_requests=_get_number("RATE_LIMIT_MAX_REQUESTS", "100", int),
    )

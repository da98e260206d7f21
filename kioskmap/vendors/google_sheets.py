"""Client utilities for published Google Sheets CSV exports."""

import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from kioskmap.core.config import Settings, get_settings
from kioskmap.models import SourceDescriptor

logger = logging.getLogger(__name__)


def _build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=("GET",),
        raise_on_status=False,
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


_SESSION = _build_session()


def build_source_url(source: SourceDescriptor, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return f"{settings.sheet_csv_base_url}{source.source_handle}"


def _looks_like_html(text: str) -> bool:
    head = text.lstrip()[:100].lower()
    return head.startswith("<!doctype html") or head.startswith("<html")


def fetch_source_text(source: SourceDescriptor, settings: Optional[Settings] = None) -> Optional[str]:
    """Download the CSV export of one tab.

    Returns None (after logging a warning) on any transport failure, non-2xx
    status or a body that is not CSV, so a single broken tab never aborts the
    whole aggregation.
    """
    settings = settings or get_settings()
    url = build_source_url(source, settings)

    try:
        response = _SESSION.get(url, timeout=settings.request_timeout)
    except requests.RequestException as exc:
        logger.warning("Could not load sheet %s: %s", source.display_name, exc)
        return None

    if not (200 <= response.status_code < 300):
        logger.warning("Could not load sheet %s: HTTP %s", source.display_name, response.status_code)
        return None

    # Exports are UTF-8 even when the content type omits the charset.
    response.encoding = "utf-8"
    text = response.text
    if not text or not text.strip():
        logger.warning("Sheet %s returned an empty body", source.display_name)
        return None
    if _looks_like_html(text):
        # Unpublished sheets answer with a sign-in page instead of CSV.
        logger.warning("Sheet %s returned HTML instead of CSV; is it published?", source.display_name)
        return None

    return text

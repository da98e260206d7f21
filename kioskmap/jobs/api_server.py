"""HTTP entrypoint serving the aggregated kiosk list (Cloud Run friendly)."""

from __future__ import annotations

import hmac
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from flask import Blueprint, Flask, current_app, jsonify, request

from kioskmap import __version__
from kioskmap.core.aggregator import AllSourcesFailedError, aggregate_places
from kioskmap.core.cache import PlaceCache
from kioskmap.core.config import Settings, get_settings
from kioskmap.models import OpenState, PlaceRecord

logger = logging.getLogger(__name__)

# Fields that must never leave the process.
INTERNAL_FIELDS = ("source_handle",)

# Response key -> record attribute for GET /api/filters.
FILTER_FIELDS = {
    "localities": "locality",
    "districts": "district",
    "distributors": "distributor",
    "storefronts": "storefront",
    "facades": "facade",
    "non_editorial_sales": "non_editorial_sales",
    "delivery": "delivery",
    "subscriptions": "subscriptions",
    "top_sellers": "top_seller",
    "uses_online_ordering": "uses_online_ordering",
}

_STATUS_FILTERS = {
    "abierto": OpenState.OPEN,
    "open": OpenState.OPEN,
    "cerrado": OpenState.CLOSED,
    "closed": OpenState.CLOSED,
}


class RateLimiter:
    """Fixed-window request counter keyed by client address."""

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, List[float]] = {}

    def allow(self, client_id: str) -> bool:
        now = self._clock()
        with self._lock:
            expired = [key for key, (start, _) in self._windows.items() if now - start > self.window_seconds]
            for key in expired:
                del self._windows[key]

            window = self._windows.get(client_id)
            if window is None:
                self._windows[client_id] = [now, 1]
                return True
            if window[1] >= self.max_requests:
                return False
            window[1] += 1
            return True


def sanitize_record(record: PlaceRecord) -> Dict[str, Any]:
    entry = record.to_dict()
    for name in INTERNAL_FIELDS:
        entry.pop(name, None)
    return entry


def filter_places(
    places: Iterable[PlaceRecord],
    *,
    status: Optional[str] = None,
    locality: Optional[str] = None,
    district: Optional[str] = None,
    distributor: Optional[str] = None,
) -> List[PlaceRecord]:
    """Apply the list endpoint's query filters; substring matches ignore case."""
    result = list(places)

    wanted_state = _STATUS_FILTERS.get((status or "").strip().lower())
    if wanted_state is not None:
        result = [place for place in result if place.open_state is wanted_state]

    for attribute, needle in (("locality", locality), ("district", district), ("distributor", distributor)):
        if needle:
            needle = needle.lower()
            result = [place for place in result if needle in getattr(place, attribute).lower()]

    return result


def distinct_values(places: Iterable[PlaceRecord]) -> Dict[str, List[str]]:
    places = list(places)
    return {
        key: sorted({getattr(place, attribute) for place in places if getattr(place, attribute)})
        for key, attribute in FILTER_FIELDS.items()
    }


# ---------- Routes ----------

api = Blueprint("api", __name__, url_prefix="/api")


def _cache() -> PlaceCache:
    return current_app.extensions["place_cache"]


def _settings() -> Settings:
    return current_app.extensions["kioskmap_settings"]


@api.before_request
def guard_api() -> Any:
    limiter: RateLimiter = current_app.extensions["rate_limiter"]
    client_id = request.remote_addr or request.headers.get("X-Forwarded-For") or "unknown"
    if not limiter.allow(client_id):
        return (
            jsonify(
                {
                    "error": "too many requests",
                    "message": f"limit of {limiter.max_requests} requests per window exceeded",
                }
            ),
            429,
        )

    provided = request.headers.get("X-API-Key") or request.args.get("apiKey")
    if not provided:
        return jsonify({"error": "unauthorized", "message": "send the X-API-Key header or apiKey parameter"}), 401

    expected = _settings().api_key
    if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
        return jsonify({"error": "forbidden", "message": "invalid API key"}), 403
    return None


@api.errorhandler(AllSourcesFailedError)
def handle_all_sources_failed(exc: AllSourcesFailedError) -> Any:
    logger.error("Place data unavailable: %s", exc)
    return jsonify({"error": "internal server error"}), 500


@api.get("/places")
def list_places() -> Any:
    places = filter_places(
        _cache().get(),
        status=request.args.get("status"),
        locality=request.args.get("locality"),
        district=request.args.get("district"),
        distributor=request.args.get("distributor"),
    )
    return jsonify([sanitize_record(place) for place in places]), 200


@api.get("/places/<place_id>")
def get_place(place_id: str) -> Any:
    for place in _cache().get():
        if place.id == place_id:
            return jsonify(sanitize_record(place)), 200
    return jsonify({"error": "place not found"}), 404


@api.get("/filters")
def list_filters() -> Any:
    return jsonify(distinct_values(_cache().get())), 200


@api.post("/refresh")
def refresh_places() -> Any:
    cache = _cache()
    cache.invalidate()
    places = cache.get(force_refresh=True)
    logger.info("Cache refreshed on request: %d places", len(places))
    return jsonify({"message": "cache refreshed", "total": len(places)}), 200


@api.get("/info")
def info() -> Any:
    return jsonify({"source": "Google Sheets", "version": __version__}), 200


# ---------- App factory ----------


def create_app(settings: Optional[Settings] = None, cache: Optional[PlaceCache] = None) -> Flask:
    """Composition root: one cache and one rate limiter per process."""
    settings = settings or get_settings()
    if cache is None:
        cache = PlaceCache(
            lambda: aggregate_places(settings=settings),
            ttl_seconds=settings.cache_ttl_seconds,
        )

    app = Flask(__name__)
    app.extensions["kioskmap_settings"] = settings
    app.extensions["place_cache"] = cache
    app.extensions["rate_limiter"] = RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

    @app.get("/")
    def root() -> Any:
        return "ok", 200

    @app.get("/healthz")
    def healthcheck() -> Any:
        entry = cache.entry
        return (
            jsonify(
                {
                    "status": "ok",
                    "sources": len(settings.sources),
                    "cached_places": len(entry.data) if entry else None,
                    "cache_fresh": cache.is_fresh(),
                }
            ),
            200,
        )

    app.register_blueprint(api)
    return app


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    settings = get_settings()
    app = create_app(settings)

    # Warm the cache so the first request does not pay for the fetch.
    try:
        places = app.extensions["place_cache"].get()
        logger.info("[BOOT] %d places loaded from %d sheets", len(places), len(settings.sources))
    except AllSourcesFailedError as exc:
        logger.error("[BOOT] Could not load places: %s (is the sheet published?)", exc)

    logger.info("[BOOT] Binding on 0.0.0.0:%d", settings.port)
    app.run(host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()

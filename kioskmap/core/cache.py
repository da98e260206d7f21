"""Time-boxed memo of the last successful aggregation."""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from kioskmap.models import PlaceRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class CacheEntry:
    data: Tuple[PlaceRecord, ...]
    fetched_at: float


class PlaceCache:
    """Lazily refreshed cache in front of the sheet aggregator.

    A fresh entry is served without touching the network. Reloads happen on
    the first read after the TTL expires, after ``invalidate()`` or when the
    caller forces one. Failed loads are not cached: the exception propagates
    and the next read tries again.

    Reloads are single-flight: concurrent readers that find the entry stale
    wait for the one reload in progress instead of starting their own.
    """

    def __init__(
        self,
        loader: Callable[[], Sequence[PlaceRecord]],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not math.isfinite(ttl_seconds) or ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be a positive finite number")
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entry: Optional[CacheEntry] = None
        self._refresh_lock = threading.Lock()
        # Guards _entry and _generation; never held while loading.
        self._state_lock = threading.Lock()
        # Bumped by invalidate() so a reload racing with it is discarded.
        self._generation = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def entry(self) -> Optional[CacheEntry]:
        return self._entry

    def _is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        return entry is not None and (self._clock() - entry.fetched_at) < self._ttl

    def is_fresh(self) -> bool:
        return self._is_fresh(self._entry)

    def get(self, force_refresh: bool = False) -> Tuple[PlaceRecord, ...]:
        entry = self._entry
        if not force_refresh and self._is_fresh(entry):
            return entry.data

        with self._refresh_lock:
            current = self._entry
            if current is not entry and self._is_fresh(current):
                # Another caller reloaded while we waited for the lock.
                return current.data

            with self._state_lock:
                generation = self._generation
            logger.info("Refreshing place cache (forced=%s)", force_refresh)
            data = tuple(self._loader())
            fresh = CacheEntry(data=data, fetched_at=self._clock())
            with self._state_lock:
                if generation == self._generation:
                    self._entry = fresh
            return fresh.data

    def invalidate(self) -> None:
        with self._state_lock:
            self._generation += 1
            self._entry = None
        logger.info("Place cache invalidated")

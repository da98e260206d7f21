"""Fan-out over every configured sheet tab and merge the results."""

from __future__ import annotations

import logging
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from kioskmap.core.config import Settings, get_settings
from kioskmap.etl.csv_parser import parse_csv
from kioskmap.etl.transform import normalize_rows
from kioskmap.models import PlaceRecord, SourceDescriptor
from kioskmap.vendors.google_sheets import fetch_source_text

logger = logging.getLogger(__name__)

Fetcher = Callable[[SourceDescriptor], Optional[str]]


class AllSourcesFailedError(RuntimeError):
    """Raised when not a single sheet tab could be loaded."""

    def __init__(self, failed: Sequence[str]):
        self.failed = list(failed)
        super().__init__(f"all {len(self.failed)} sheet sources failed: {', '.join(self.failed)}")


def _fetch_all(
    sources: Sequence[SourceDescriptor], fetch: Fetcher, max_workers: int
) -> List[Optional[str]]:
    """Run every fetch concurrently and wait for all of them.

    Returns one entry per source, in source order; None marks a failure.
    """
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sheet-fetch") as executor:
        futures = [executor.submit(fetch, source) for source in sources]
        wait(futures, return_when=ALL_COMPLETED)

    results: List[Optional[str]] = []
    for source, future in zip(sources, futures):
        exc = future.exception()
        if exc is not None:
            logger.warning("Unexpected error loading sheet %s: %s", source.display_name, exc)
            results.append(None)
        else:
            results.append(future.result())
    return results


def dedupe_by_position(records: Iterable[PlaceRecord]) -> List[PlaceRecord]:
    """Keep the first record seen for each (latitude, longitude) pair."""
    seen: set[Tuple[float, float]] = set()
    unique: List[PlaceRecord] = []
    for record in records:
        key = record.position
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique


def aggregate_places(
    sources: Optional[Sequence[SourceDescriptor]] = None,
    *,
    settings: Optional[Settings] = None,
    fetch: Optional[Fetcher] = None,
    max_workers: Optional[int] = None,
) -> List[PlaceRecord]:
    """Load every tab, normalize its rows and merge them without duplicates.

    Tabs that fail are skipped with a warning; AllSourcesFailedError is raised
    only when every tab failed. Duplicate positions are resolved in favour of
    the tab listed first.
    """
    if sources is None or fetch is None or max_workers is None:
        settings = settings or get_settings()
    if sources is None:
        sources = settings.sources
    if fetch is None:
        fetch = partial(fetch_source_text, settings=settings)
    if max_workers is None:
        max_workers = settings.max_workers

    sources = list(sources)
    if not sources:
        logger.warning("No sheet sources configured; nothing to aggregate.")
        return []

    logger.info("Loading %d sheet sources", len(sources))
    texts = _fetch_all(sources, fetch, max(1, min(max_workers, len(sources))))

    merged: List[PlaceRecord] = []
    failed: List[str] = []
    yields: Dict[str, int] = {}
    for source, text in zip(sources, texts):
        if text is None:
            failed.append(source.display_name)
            continue
        records = normalize_rows(parse_csv(text), source)
        yields[source.display_name] = len(records)
        logger.info("  %s: %d places", source.display_name, len(records))
        merged.extend(records)

    if len(failed) == len(sources):
        logger.error("Every sheet source failed: %s", ", ".join(failed))
        raise AllSourcesFailedError(failed)

    unique = dedupe_by_position(merged)
    logger.info(
        "Total: %d unique places from %d/%d sources (%d duplicates dropped)",
        len(unique),
        len(yields),
        len(sources),
        len(merged) - len(unique),
    )
    return unique

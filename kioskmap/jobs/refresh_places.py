"""CLI job that runs one aggregation pass over the configured sheet tabs."""

import argparse
import json
import logging
import sys
from typing import List, Optional, Sequence

from kioskmap.core.aggregator import AllSourcesFailedError, aggregate_places
from kioskmap.core.config import ConfigError, get_settings
from kioskmap.models import SourceDescriptor

logger = logging.getLogger(__name__)


class UnknownSourceError(ValueError):
    """Raised when --source names a tab that is not configured."""


def select_sources(available: Sequence[SourceDescriptor], names: Optional[List[str]]) -> List[SourceDescriptor]:
    """Restrict the configured tabs to ``names``, preserving configured order."""
    if not names:
        return list(available)
    known = {source.display_name for source in available}
    unknown = [name for name in names if name not in known]
    if unknown:
        raise UnknownSourceError(f"Unknown sheet source(s): {', '.join(unknown)}")
    return [source for source in available if source.display_name in names]


def run_refresh_job(*, source_names: Optional[List[str]] = None, as_json: bool = False, out=None) -> int:
    out = out or sys.stdout
    settings = get_settings()
    sources = select_sources(settings.sources, source_names)

    places = aggregate_places(sources, settings=settings)

    if as_json:
        json.dump([place.to_dict() for place in places], out, ensure_ascii=False, indent=2)
        out.write("\n")
    else:
        open_count = sum(1 for place in places if place.open_state.as_bool() is True)
        closed_count = sum(1 for place in places if place.open_state.as_bool() is False)
        out.write(
            f"{len(places)} places from {len(sources)} sources "
            f"(open={open_count} closed={closed_count} unknown={len(places) - open_count - closed_count})\n"
        )
    return len(places)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load every configured sheet tab and report the merged places")
    parser.add_argument(
        "--source",
        dest="sources",
        action="append",
        help="Only load this tab (repeatable); defaults to every configured tab",
    )
    parser.add_argument("--json", dest="as_json", action="store_true", help="Print the places as JSON")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        run_refresh_job(source_names=args.sources, as_json=args.as_json)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except UnknownSourceError as exc:
        logger.error("%s", exc)
        raise SystemExit(2) from exc
    except AllSourcesFailedError as exc:
        logger.error("Refresh failed: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()

"""Utilities for transforming spreadsheet rows into PlaceRecord objects."""

import logging
import math
import uuid
from typing import Any, Iterable, List, Mapping, Optional

from kioskmap.models import OpenState, PlaceRecord, SourceDescriptor

logger = logging.getLogger(__name__)

PERMANENTLY_CLOSED = "Cerrado definitivamente"
UNNAMED = "Sin nombre"
DESCRIPTION_SEPARATOR = " - "

_CLOSED_MARKERS = ("cerrado", "closed")
_OPEN_VALUES = {"abierto", "open"}

# Row keys copied verbatim onto the record, defaulting to "".
_PASSTHROUGH_FIELDS = (
    "package",
    "address",
    "locality",
    "district",
    "province",
    "phone",
    "email",
    "contact_name",
    "attendance_days",
    "business_hours",
    "status",
    "distributor",
    "vendor_number",
    "image_url",
    "storefront",
    "location_description",
    "facade",
    "non_editorial_sales",
    "delivery",
    "subscriptions",
    "top_seller",
    "uses_online_ordering",
)


def derive_open_state(raw_status: Optional[str]) -> OpenState:
    """Map a free-text status to OPEN, CLOSED or UNKNOWN.

    The "closed" substring check runs first, so "Cerrado pero hace reparto"
    is CLOSED regardless of the delivery column.
    """
    status = (raw_status or "").strip().lower()
    if any(marker in status for marker in _CLOSED_MARKERS):
        return OpenState.CLOSED
    if status in _OPEN_VALUES:
        return OpenState.OPEN
    return OpenState.UNKNOWN


def parse_coordinate(value: Any, limit: float) -> Optional[float]:
    """Return a usable coordinate or None.

    Accepts a decimal comma ("-34,6037"). Zero, non-finite and out-of-range
    values are rejected.
    """
    if value is None:
        return None
    text = str(value).strip()
    if text.count(",") == 1 and "." not in text:
        text = text.replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number) or number == 0 or abs(number) > limit:
        return None
    return number


def _is_permanently_closed(raw_status: Optional[str]) -> bool:
    return (raw_status or "").strip().lower() == PERMANENTLY_CLOSED.lower()


def _build_description(row: Mapping[str, str]) -> str:
    parts = [row.get(key) or "" for key in ("location_description", "storefront", "facade")]
    return DESCRIPTION_SEPARATOR.join(part for part in parts if part)


def to_place_record(row: Mapping[str, str], source: SourceDescriptor) -> Optional[PlaceRecord]:
    """Normalize one mapped row, or return None when the row must be dropped."""
    latitude = parse_coordinate(row.get("latitude"), 90.0)
    longitude = parse_coordinate(row.get("longitude"), 180.0)
    if latitude is None or longitude is None:
        return None

    if _is_permanently_closed(row.get("status")):
        return None

    values = {key: row.get(key) or "" for key in _PASSTHROUGH_FIELDS}

    return PlaceRecord(
        id=row.get("id") or uuid.uuid4().hex,
        name=values["package"] or UNNAMED,
        latitude=latitude,
        longitude=longitude,
        description=_build_description(row),
        sourced_from=source.display_name,
        source_handle=source.source_handle,
        open_state=derive_open_state(values["status"]),
        **values,
    )


def normalize_rows(rows: Iterable[Mapping[str, str]], source: SourceDescriptor) -> List[PlaceRecord]:
    records: List[PlaceRecord] = []
    for row in rows:
        record = to_place_record(row, source)
        if record is not None:
            records.append(record)
    return records

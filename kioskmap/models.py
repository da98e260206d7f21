"""Core data models shared by the spreadsheet ingestion pipeline."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


class OpenState(enum.Enum):
    """Operating state derived from the free-text status column."""

    OPEN = "open"
    CLOSED = "closed"
    UNKNOWN = "unknown"

    def as_bool(self) -> Optional[bool]:
        if self is OpenState.OPEN:
            return True
        if self is OpenState.CLOSED:
            return False
        return None


@dataclass(frozen=True, slots=True)
class SourceDescriptor:
    """One spreadsheet tab: a human name plus the handle used to fetch it."""

    display_name: str
    source_handle: str


@dataclass(frozen=True, slots=True)
class PlaceRecord:
    """Normalized kiosk published by one of the spreadsheet tabs."""

    id: str
    name: str
    latitude: float
    longitude: float
    package: str = ""
    kind: str = "kiosco"
    description: str = ""
    address: str = ""
    locality: str = ""
    district: str = ""
    province: str = ""
    phone: str = ""
    email: str = ""
    contact_name: str = ""
    attendance_days: str = ""
    business_hours: str = ""
    status: str = ""
    distributor: str = ""
    vendor_number: str = ""
    image_url: str = ""
    # Categorical fields only used for filtering.
    storefront: str = ""
    location_description: str = ""
    facade: str = ""
    non_editorial_sales: str = ""
    delivery: str = ""
    subscriptions: str = ""
    top_seller: str = ""
    uses_online_ordering: str = ""
    sourced_from: str = ""
    source_handle: str = field(default="", repr=False)
    open_state: OpenState = OpenState.UNKNOWN

    @property
    def position(self) -> tuple:
        return (self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation; ``open_state`` becomes ``is_open``."""
        entry = asdict(self)
        entry.pop("open_state")
        entry["is_open"] = self.open_state.as_bool()
        return entry

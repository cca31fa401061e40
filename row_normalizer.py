"""
Row normalizer - turns one spreadsheet row into a GeoJSON club feature.

Column layout (0-indexed):
    0 name, 1 city, 2 frequency, 3 frequency (secondary language),
    4 description, 5 description (secondary language), 6 image,
    7 latitude, 8 longitude, 9 instagram, 10 facebook, 11 website,
    12 tiktok, then schema-dependent social columns (see SOCIAL_COLUMNS).
"""
import logging
import math
import re
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from errors import ConfigInvalid

logger = logging.getLogger(__name__)

LAT_COL = 7
LON_COL = 8
LAT_MIN, LAT_MAX = -90.0, 90.0
LON_MIN, LON_MAX = -180.0, 180.0


class SchemaVersion(Enum):
    LEGACY = "legacy"
    CURRENT = "current"

    @classmethod
    def parse(cls, value: Union[str, "SchemaVersion"]) -> "SchemaVersion":
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower()
        for version in cls:
            if version.value == key:
                return version
        raise ConfigInvalid(f"Unknown schema version {value!r}; expected one of: legacy, current")


_BASE_SOCIAL = {
    "instagram": 9,
    "facebook": 10,
    "website": 11,
    "tiktok": 12,
}

SOCIAL_COLUMNS: Dict[SchemaVersion, Dict[str, int]] = {
    SchemaVersion.LEGACY: {**_BASE_SOCIAL, "linkedin": 13},
    SchemaVersion.CURRENT: {**_BASE_SOCIAL, "whatsapp": 13, "strava": 14},
}

_LEADING_FLOAT_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


class Rejected:
    """A row that could not become a feature. Reported, never raised."""

    def __init__(self, row_index: int, reason: str, raw: Dict[str, str], parsed: Dict[str, Optional[float]]):
        self.row_index = row_index
        self.reason = reason
        self.raw = raw
        self.parsed = parsed

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"Rejected(row_index={self.row_index}, reason={self.reason!r}, raw={self.raw!r})"


def cell(row: Sequence[object], index: int) -> str:
    """Return the trimmed text of a cell; missing trailing cells read as ''."""
    if index >= len(row):
        return ""
    value = row[index]
    if value is None:
        return ""
    return str(value).strip()


def parse_coordinate(text: str) -> Optional[float]:
    """Parse a spreadsheet coordinate, accepting '45,75' and trailing junk like parseFloat."""
    t = (text or "").strip()
    if not t:
        return None
    if "," in t and "." not in t:
        t = t.replace(",", ".", 1)
    m = _LEADING_FLOAT_RE.match(t)
    if not m:
        return None
    try:
        value = float(m.group(0))
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def normalize(
    row: Sequence[object],
    row_index: int,
    schema: SchemaVersion = SchemaVersion.CURRENT,
    log: Optional[logging.Logger] = None,
) -> Union[Dict, Rejected]:
    """Convert one raw row into a Point feature, or a Rejected diagnostic."""
    log = log or logger
    raw_lat = cell(row, LAT_COL)
    raw_lon = cell(row, LON_COL)
    lat = parse_coordinate(raw_lat)
    lon = parse_coordinate(raw_lon)

    reason = None
    if lat is None or lon is None:
        reason = "invalid coordinates"
    elif not (LAT_MIN <= lat <= LAT_MAX) or not (LON_MIN <= lon <= LON_MAX):
        reason = "coordinates out of range"

    if reason:
        rejected = Rejected(
            row_index=row_index,
            reason=reason,
            raw={"latitude": raw_lat, "longitude": raw_lon, "name": cell(row, 0)},
            parsed={"latitude": lat, "longitude": lon},
        )
        log.warning(
            f"Rejected row {row_index} ({cell(row, 0) or 'unnamed'}): {reason} "
            f"latitude={raw_lat!r} -> {lat}, longitude={raw_lon!r} -> {lon}"
        )
        return rejected

    name = cell(row, 0)
    if not name:
        log.warning(f"Row {row_index} has no club name")

    social = {provider: cell(row, idx) for provider, idx in SOCIAL_COLUMNS[schema].items()}

    return {
        "type": "Feature",
        "geometry": {
            "type": "Point",
            "coordinates": [lon, lat],
        },
        "properties": {
            "name": name,
            # No dedicated column; the secondary name mirrors the primary one.
            "name_secondary": name,
            "city": cell(row, 1),
            "frequency": cell(row, 2),
            "frequency_secondary": cell(row, 3),
            "description": cell(row, 4),
            "description_secondary": cell(row, 5),
            "image": cell(row, 6),
            "social": social,
        },
    }


def has_social_link(feature: Dict, provider: str) -> bool:
    """Empty string and missing key both mean 'no link'."""
    social = (feature.get("properties") or {}).get("social") or {}
    return bool(str(social.get(provider) or "").strip())


def social_links(feature: Dict) -> Dict[str, str]:
    """Only the providers that actually have a link."""
    social = (feature.get("properties") or {}).get("social") or {}
    return {k: str(v).strip() for k, v in social.items() if has_social_link(feature, k)}


def normalize_rows(rows: List[Sequence[object]], schema: SchemaVersion = SchemaVersion.CURRENT, log: Optional[logging.Logger] = None) -> List[Union[Dict, Rejected]]:
    return [normalize(row, i, schema=schema, log=log) for i, row in enumerate(rows)]

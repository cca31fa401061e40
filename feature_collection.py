"""
Feature collection builder - wraps normalized rows in a GeoJSON envelope.
"""
import logging
import math
from typing import Dict, List, Optional, Sequence

from errors import SourceUnavailable
from row_normalizer import Rejected, SchemaVersion, normalize_rows

logger = logging.getLogger(__name__)


def empty_collection() -> Dict:
    return {"type": "FeatureCollection", "features": []}


def has_point_coordinates(feature: object) -> bool:
    """Two finite numbers in geometry.coordinates."""
    if not isinstance(feature, dict):
        return False
    geometry = feature.get("geometry")
    if not isinstance(geometry, dict):
        return False
    coords = geometry.get("coordinates")
    if not isinstance(coords, (list, tuple)) or len(coords) != 2:
        return False
    return all(
        isinstance(c, (int, float)) and not isinstance(c, bool) and math.isfinite(c)
        for c in coords
    )


def is_feature_collection(obj: object) -> bool:
    """Check the envelope shape (and that every feature is a Point with numeric coordinates)."""
    if not isinstance(obj, dict):
        return False
    if obj.get("type") != "FeatureCollection" or not isinstance(obj.get("features"), list):
        return False
    for feature in obj["features"]:
        if not isinstance(feature, dict) or feature.get("type") != "Feature":
            return False
        if not has_point_coordinates(feature):
            return False
    return True


def build(rows: List[Sequence[object]], schema: SchemaVersion = SchemaVersion.CURRENT, log: Optional[logging.Logger] = None) -> Dict:
    """Normalize every row and keep the accepted features in input order."""
    results = normalize_rows(rows or [], schema=schema, log=log)
    features = [r for r in results if not isinstance(r, Rejected)]
    rejected = len(results) - len(features)
    (log or logger).info(f"Built {len(features)} feature(s) from {len(results)} row(s) ({rejected} rejected)")
    return {"type": "FeatureCollection", "features": features}


def build_from_source(source, ranges: List[str], schema: SchemaVersion = SchemaVersion.CURRENT) -> Dict:
    """Fetch rows from the row source and build; any source failure yields an empty collection."""
    try:
        rows = source.fetch_rows(ranges)
    except SourceUnavailable as e:
        logger.error(f"Row source unavailable, serving empty collection: {e}")
        return empty_collection()
    except Exception as e:
        logger.error(f"Unexpected row source error, serving empty collection: {e}")
        return empty_collection()

    if not rows:
        logger.warning("Row source returned no rows")
        return empty_collection()
    return build(rows, schema=schema)

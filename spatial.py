"""
Spatial helpers: bounding boxes, the initial center/zoom heuristic,
Web Mercator projection and a fit-bounds calculation for the viewport.

Bounds are naive planar boxes in degrees. Extents that cross the
antimeridian are not handled; a box spanning -179..179 is treated as
358 degrees wide.
"""
import math
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

DEFAULT_CENTER = [46.5, 2.5]
DEFAULT_ZOOM = 6
SINGLE_FEATURE_ZOOM = 10

# (max extent in degrees, zoom) - first match wins
ZOOM_THRESHOLDS = [
    (0.1, 12),
    (0.5, 10),
    (1.0, 8),
    (2.0, 7),
    (5.0, 6),
]
WIDEST_ZOOM = 5

TILE_SIZE = 256
MAX_LATITUDE = 85.0511287798
MAX_ZOOM = 18


class Bounds(NamedTuple):
    south: float
    west: float
    north: float
    east: float

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.south + self.north) / 2.0, (self.west + self.east) / 2.0)

    def pad(self, ratio: float) -> "Bounds":
        """Grow each side by ratio of the extent, like Leaflet's LatLngBounds.pad."""
        dlat = abs(self.north - self.south) * ratio
        dlon = abs(self.east - self.west) * ratio
        return Bounds(self.south - dlat, self.west - dlon, self.north + dlat, self.east + dlon)

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east

    def intersects(self, other: "Bounds") -> bool:
        return not (
            other.north < self.south
            or other.south > self.north
            or other.east < self.west
            or other.west > self.east
        )


def feature_latlon(feature: Dict) -> Tuple[float, float]:
    lon, lat = feature["geometry"]["coordinates"][:2]
    return float(lat), float(lon)


def bounds_of_points(points: Iterable[Tuple[float, float]]) -> Optional[Bounds]:
    pts = list(points)
    if not pts:
        return None
    lats = [p[0] for p in pts]
    lons = [p[1] for p in pts]
    return Bounds(min(lats), min(lons), max(lats), max(lons))


def bounding_box(features: Iterable[Dict]) -> Optional[Bounds]:
    return bounds_of_points(feature_latlon(f) for f in features)


def zoom_for_extent(max_diff: float) -> int:
    for limit, zoom in ZOOM_THRESHOLDS:
        if max_diff < limit:
            return zoom
    return WIDEST_ZOOM


def compute_bounds(features: List[Dict]) -> Dict:
    """Center ([lat, lon]) and a coarse zoom level for the initial map view.

    Zero features keep the national default; one feature gets a fixed close
    zoom; otherwise the zoom comes from the larger of the two extents.
    """
    if not features:
        return {"center": list(DEFAULT_CENTER), "zoom": DEFAULT_ZOOM}

    if len(features) == 1:
        lat, lon = feature_latlon(features[0])
        return {"center": [lat, lon], "zoom": SINGLE_FEATURE_ZOOM}

    box = bounding_box(features)
    center_lat, center_lon = box.center
    max_diff = max(box.north - box.south, box.east - box.west)
    return {"center": [center_lat, center_lon], "zoom": zoom_for_extent(max_diff)}


def project(lat: float, lon: float, zoom: float) -> Tuple[float, float]:
    """Spherical Web Mercator, in global pixel coordinates at the given zoom."""
    scale = TILE_SIZE * (2 ** zoom)
    lat = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat))
    siny = math.sin(math.radians(lat))
    x = (lon + 180.0) / 360.0 * scale
    y = (0.5 - math.log((1 + siny) / (1 - siny)) / (4 * math.pi)) * scale
    return x, y


def unproject(x: float, y: float, zoom: float) -> Tuple[float, float]:
    scale = TILE_SIZE * (2 ** zoom)
    lon = x / scale * 360.0 - 180.0
    n = math.pi - 2.0 * math.pi * y / scale
    lat = math.degrees(math.atan(math.sinh(n)))
    return lat, lon


def fit_bounds(bounds: Bounds, width: int, height: int, padding: float = 0.15, max_zoom: int = MAX_ZOOM) -> Dict:
    """Center and the deepest integer zoom at which the padded box fits a width x height viewport."""
    padded = bounds.pad(padding)
    zoom = 0
    for z in range(max_zoom, -1, -1):
        x1, y1 = project(padded.north, padded.west, z)
        x2, y2 = project(padded.south, padded.east, z)
        if abs(x2 - x1) <= width and abs(y2 - y1) <= height:
            zoom = z
            break

    x1, y1 = project(bounds.north, bounds.west, zoom)
    x2, y2 = project(bounds.south, bounds.east, zoom)
    center_lat, center_lon = unproject((x1 + x2) / 2.0, (y1 + y2) / 2.0, zoom)
    return {"center": [center_lat, center_lon], "zoom": zoom}


def viewport_bounds(center: Tuple[float, float], zoom: float, width: int, height: int) -> Bounds:
    cx, cy = project(center[0], center[1], zoom)
    north, west = unproject(cx - width / 2.0, cy - height / 2.0, zoom)
    south, east = unproject(cx + width / 2.0, cy + height / 2.0, zoom)
    return Bounds(south, west, north, east)


def is_valid_position(lat: object, lon: object) -> bool:
    """Finite, in range, and not the (0, 0) placeholder."""
    try:
        lat_f = float(lat)  # type: ignore[arg-type]
        lon_f = float(lon)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        return False
    if lat_f == 0.0 and lon_f == 0.0:
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0

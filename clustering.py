"""
Cluster presentation engine.

Groups the visible clubs into map nodes for a given zoom: points are
projected to Web Mercator pixels and merged by greedy buffer clustering
(a point joins the first group whose centroid lies within
max_cluster_radius pixels). From disable_clustering_at_zoom on, every club
is its own marker.

The renderer never mutates markers in place. It asks for the desired node
list and applies the add/remove diff from reconcile(), so a node is only
ever drawn with its final position.
"""
import hashlib
import logging
import math
import posixpath
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

from filters import feature_key
from row_normalizer import social_links
from spatial import MAX_ZOOM, Bounds, bounds_of_points, feature_latlon, is_valid_position, project, unproject

logger = logging.getLogger(__name__)

DEFAULT_MAX_CLUSTER_RADIUS = 80
DEFAULT_DISABLE_CLUSTERING_AT_ZOOM = 16
DEFAULT_SPIDERFY_LEG_PX = 30
DEFAULT_SAME_LOCATION_PX = 2.0
DEFAULT_SELECT_ZOOM = 12
DEFAULT_IMAGE_BASE_PATH = "/images/"
FALLBACK_GLYPH = "\U0001F3C3"  # runner


@dataclass
class ClusterNode:
    key: str
    kind: str  # "marker" or "cluster"
    lat: float
    lon: float
    count: int
    members: List[str]
    bounds: Bounds
    feature: Optional[Dict] = None
    icon: Optional[Dict] = None
    spiderfiable: bool = False

    def to_dict(self) -> Dict:
        out = {
            "key": self.key,
            "kind": self.kind,
            "lat": self.lat,
            "lon": self.lon,
            "count": self.count,
            "members": list(self.members),
            "bounds": list(self.bounds),
        }
        if self.kind == "marker":
            out["feature"] = self.feature
            out["icon"] = self.icon
            out["links"] = social_links(self.feature or {})
        else:
            out["spiderfiable"] = self.spiderfiable
        return out


@dataclass
class SpiderLeg:
    key: str
    lat: float
    lon: float
    origin_lat: float
    origin_lon: float
    angle: float

    def to_dict(self) -> Dict:
        return {
            "key": self.key,
            "lat": self.lat,
            "lon": self.lon,
            "origin": [self.origin_lat, self.origin_lon],
            "angle": self.angle,
        }


@dataclass
class RenderDiff:
    add: List[ClusterNode] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)
    keep: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "add": [n.to_dict() for n in self.add],
            "remove": list(self.remove),
            "keep": list(self.keep),
        }


class _Point:
    __slots__ = ("key", "feature", "lat", "lon", "x", "y")

    def __init__(self, key: str, feature: Dict, lat: float, lon: float, x: float, y: float):
        self.key = key
        self.feature = feature
        self.lat = lat
        self.lon = lon
        self.x = x
        self.y = y


class _Group:
    def __init__(self, point: _Point):
        self.points = [point]
        self.cx = point.x
        self.cy = point.y

    def add(self, point: _Point) -> None:
        self.points.append(point)
        n = len(self.points)
        self.cx += (point.x - self.cx) / n
        self.cy += (point.y - self.cy) / n


def correct_image_path(image: str, base_path: str = DEFAULT_IMAGE_BASE_PATH) -> str:
    """Point bare filenames and mis-rooted local paths at the site's image folder.

    "club.jpg" -> "/images/club.jpg"
    "public/images/club.jpg", "./images/club.jpg" -> "/images/club.jpg"
    "/assets/club.jpg" -> "/images/club.jpg"
    http(s), protocol-relative and data: URLs are left alone.
    """
    img = (image or "").strip()
    if not img:
        return ""
    base = base_path if base_path.endswith("/") else base_path + "/"

    parsed = urlparse(img)
    if parsed.scheme in ("http", "https", "data") or img.startswith("//"):
        return img
    if img.startswith(base):
        return img

    path = img.replace("\\", "/")
    marker = "images/"
    idx = path.rfind(marker)
    if idx >= 0:
        rest = path[idx + len(marker):]
    else:
        rest = posixpath.basename(path)
    rest = rest.lstrip("/")
    if not rest:
        return ""
    return base + rest


def marker_icon(feature: Dict, base_path: str = DEFAULT_IMAGE_BASE_PATH) -> Dict:
    """Avatar descriptor; the renderer swaps to the glyph if the image fails to load."""
    props = feature.get("properties") or {}
    return {
        "image": correct_image_path(str(props.get("image") or ""), base_path),
        "fallback": FALLBACK_GLYPH,
        "alt": str(props.get("name") or ""),
    }


def _finite(lat: float, lon: float) -> bool:
    try:
        return math.isfinite(float(lat)) and math.isfinite(float(lon))
    except (TypeError, ValueError):
        return False


def _cluster_key(member_keys: Iterable[str]) -> str:
    digest = hashlib.sha1("\n".join(sorted(member_keys)).encode("utf-8")).hexdigest()
    return f"c:{digest[:16]}"


class ClusterEngine:
    def __init__(
        self,
        max_cluster_radius: int = DEFAULT_MAX_CLUSTER_RADIUS,
        disable_clustering_at_zoom: int = DEFAULT_DISABLE_CLUSTERING_AT_ZOOM,
        spiderfy_leg_px: float = DEFAULT_SPIDERFY_LEG_PX,
        same_location_px: float = DEFAULT_SAME_LOCATION_PX,
        image_base_path: str = DEFAULT_IMAGE_BASE_PATH,
        max_zoom: int = MAX_ZOOM,
        select_zoom: int = DEFAULT_SELECT_ZOOM,
    ):
        self.max_cluster_radius = max_cluster_radius
        self.disable_clustering_at_zoom = disable_clustering_at_zoom
        self.spiderfy_leg_px = spiderfy_leg_px
        self.same_location_px = same_location_px
        self.image_base_path = image_base_path
        self.max_zoom = max_zoom
        self.select_zoom = select_zoom

    @classmethod
    def from_settings(cls, settings) -> "ClusterEngine":
        return cls(
            max_cluster_radius=settings.max_cluster_radius,
            disable_clustering_at_zoom=settings.disable_clustering_at_zoom,
            image_base_path=settings.image_base_path,
        )

    def eligible(self, features: Sequence[Dict]) -> List[Tuple[str, Dict, float, float]]:
        """(key, feature, lat, lon) for every feature with a usable position.

        Duplicate identities get a #n suffix so each feature keeps its own node.
        """
        out = []
        seen: Dict[str, int] = {}
        for feature in features:
            try:
                lat, lon = feature_latlon(feature)
            except (KeyError, TypeError, ValueError, IndexError):
                continue
            if not is_valid_position(lat, lon):
                logger.debug(f"Skipping feature with unusable position ({lat}, {lon})")
                continue
            key = feature_key(feature)
            n = seen.get(key, 0) + 1
            seen[key] = n
            if n > 1:
                key = f"{key}#{n}"
            out.append((key, feature, lat, lon))
        return out

    def _groups(self, features: Sequence[Dict], zoom: int) -> List[_Group]:
        points = []
        for key, feature, lat, lon in self.eligible(features):
            x, y = project(lat, lon, zoom)
            points.append(_Point(key, feature, lat, lon, x, y))

        if zoom >= self.disable_clustering_at_zoom:
            return [_Group(p) for p in points]

        groups: List[_Group] = []
        for p in points:
            for g in groups:
                if math.hypot(p.x - g.cx, p.y - g.cy) <= self.max_cluster_radius:
                    g.add(p)
                    break
            else:
                groups.append(_Group(p))
        return groups

    def _same_location(self, points: List[_Point]) -> bool:
        """True when the points cannot be separated by zooming in."""
        if len(points) < 2:
            return False
        coords = [project(p.lat, p.lon, self.max_zoom) for p in points]
        x0, y0 = coords[0]
        return all(math.hypot(x - x0, y - y0) <= self.same_location_px for x, y in coords[1:])

    def _node(self, group: _Group) -> ClusterNode:
        pts = group.points
        box = bounds_of_points((p.lat, p.lon) for p in pts)
        if len(pts) == 1:
            p = pts[0]
            return ClusterNode(
                key=f"m:{p.key}",
                kind="marker",
                lat=p.lat,
                lon=p.lon,
                count=1,
                members=[p.key],
                bounds=box,
                feature=p.feature,
                icon=marker_icon(p.feature, self.image_base_path),
            )
        members = [p.key for p in pts]
        return ClusterNode(
            key=_cluster_key(members),
            kind="cluster",
            lat=sum(p.lat for p in pts) / len(pts),
            lon=sum(p.lon for p in pts) / len(pts),
            count=len(pts),
            members=members,
            bounds=box,
            spiderfiable=self._same_location(pts),
        )

    def cluster(self, features: Sequence[Dict], zoom: float, viewport: Optional[Bounds] = None, viewport_padding: float = 0.2) -> List[ClusterNode]:
        """Nodes for the given zoom; with a viewport, only nodes touching the padded viewport."""
        z = max(0, min(int(math.floor(zoom)), self.max_zoom))
        nodes = [self._node(g) for g in self._groups(features, z)]
        if viewport is None:
            return nodes
        area = viewport.pad(viewport_padding)
        return [n for n in nodes if area.intersects(n.bounds) or area.contains(n.lat, n.lon)]

    def find_node(self, nodes: Sequence[ClusterNode], key: str) -> Optional[ClusterNode]:
        for node in nodes:
            if node.key == key:
                return node
        return None

    def spiderfy(self, node: ClusterNode, zoom: float) -> List[SpiderLeg]:
        """Fan the members out on a circle of fixed pixel radius around the centroid."""
        count = len(node.members)
        if count == 0:
            return []
        cx, cy = project(node.lat, node.lon, zoom)
        step = 2 * math.pi / count
        legs = []
        for i, key in enumerate(node.members):
            angle = i * step
            lat, lon = unproject(
                cx + self.spiderfy_leg_px * math.cos(angle),
                cy + self.spiderfy_leg_px * math.sin(angle),
                zoom,
            )
            legs.append(SpiderLeg(key=key, lat=lat, lon=lon, origin_lat=node.lat, origin_lon=node.lon, angle=angle))
        return legs

    def expand(self, features: Sequence[Dict], node: ClusterNode, zoom: float) -> Dict:
        """What a click on a cluster does: zoom until it splits, or spiderfy when it cannot."""
        z = int(math.floor(zoom))
        if node.kind != "cluster":
            return {"action": "none"}
        if node.spiderfiable or z >= self.max_zoom:
            return {"action": "spiderfy", "legs": [leg.to_dict() for leg in self.spiderfy(node, z)]}

        members = set(node.members)
        for target in range(z + 1, self.disable_clustering_at_zoom + 1):
            nodes = self.cluster(features, target)
            holders = [n for n in nodes if members.intersection(n.members)]
            if len(holders) > 1:
                return {"action": "zoom", "center": [node.lat, node.lon], "zoom": target}
        return {"action": "zoom", "center": [node.lat, node.lon], "zoom": self.disable_clustering_at_zoom}

    def zoom_to_reveal(self, key: str, features: Sequence[Dict]) -> Optional[Dict]:
        """Center and zoom at which the feature with this identity is drawn as its own marker."""
        target = None
        for k, feature, lat, lon in self.eligible(features):
            if k == key:
                target = (lat, lon)
                break
        if target is None:
            return None

        start = min(self.select_zoom, self.disable_clustering_at_zoom)
        for z in range(start, self.disable_clustering_at_zoom + 1):
            nodes = self.cluster(features, z)
            if any(n.kind == "marker" and n.members == [key] for n in nodes):
                return {"center": [target[0], target[1]], "zoom": z}
        return {"center": [target[0], target[1]], "zoom": self.disable_clustering_at_zoom}


def reconcile(previous: Iterable[Union[ClusterNode, str]], desired: Sequence[ClusterNode]) -> RenderDiff:
    """Diff the drawn node keys against the desired nodes.

    Nodes without a finite position are never part of the result. (0, 0)
    placeholders are dropped per feature in eligible(); a cluster centroid
    may sit at (0, 0).
    """
    prev_keys = [p.key if isinstance(p, ClusterNode) else str(p) for p in previous]
    prev_set = set(prev_keys)
    wanted = [n for n in desired if _finite(n.lat, n.lon)]
    wanted_keys = {n.key for n in wanted}

    diff = RenderDiff()
    for node in wanted:
        if node.key in prev_set:
            diff.keep.append(node.key)
        else:
            diff.add.append(node)
    diff.remove = [k for k in prev_keys if k not in wanted_keys]
    return diff

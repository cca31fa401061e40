"""
View controller: ties loading, filtering, bounds and clustering together.

The loaded collection is never modified. Filters and viewport changes only
derive new lists from it.
"""
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from clustering import ClusterEngine, ClusterNode, reconcile
from feature_collection import has_point_coordinates
from filters import FilterState, available_cities, canonical_day, feature_key, filter_features
from spatial import bounding_box, compute_bounds, fit_bounds

logger = logging.getLogger(__name__)


class ViewController:
    def __init__(self, loader, engine: Optional[ClusterEngine] = None):
        self.loader = loader
        self.engine = engine or ClusterEngine()
        self.state = "idle"
        self.features: List[Dict] = []
        self.filters = FilterState()
        self.visible: List[Dict] = []
        self.view: Dict = compute_bounds([])
        self.viewport_size: Optional[Sequence[int]] = None
        self.rendered: List[str] = []

    def load(self, force_refresh: bool = False) -> Dict:
        self.state = "loading"
        try:
            collection = self.loader.load(force_refresh=force_refresh)
            features = list(collection.get("features") or [])
        except Exception as e:
            logger.error(f"Club load failed, showing an empty map: {e}")
            features = []
        self.features = [f for f in features if has_point_coordinates(f)]
        if len(self.features) != len(features):
            logger.warning(f"Dropped {len(features) - len(self.features)} club(s) without numeric coordinates")
        self.state = "ready"
        self.visible = filter_features(self.features, self.filters)
        self.view = compute_bounds(self.visible)
        self.rendered = []
        return self.view

    def set_viewport_size(self, width: int, height: int) -> None:
        self.viewport_size = (int(width), int(height))

    def fit_view(self) -> Dict:
        """Re-center on the visible clubs; keep the current view when nothing matches."""
        if not self.visible:
            return self.view
        if self.viewport_size:
            box = bounding_box(self.visible)
            self.view = fit_bounds(box, self.viewport_size[0], self.viewport_size[1], max_zoom=self.engine.select_zoom)
        else:
            self.view = compute_bounds(self.visible)
        return self.view

    def set_filter(self, **changes) -> List[Dict]:
        if "day" in changes:
            changes["day"] = canonical_day(changes["day"])
        self.filters = replace(self.filters, **changes)
        self.visible = filter_features(self.features, self.filters)
        self.fit_view()
        return self.visible

    def apply_filters(self, state: FilterState) -> List[Dict]:
        self.filters = state
        self.visible = filter_features(self.features, self.filters)
        self.fit_view()
        return self.visible

    def clear_filters(self) -> List[Dict]:
        return self.apply_filters(self.filters.cleared())

    def render(self, zoom: float, viewport=None) -> Dict:
        """Desired nodes for the viewport and the diff against the previous render."""
        nodes = self.engine.cluster(self.visible, zoom, viewport)
        diff = reconcile(self.rendered, nodes)
        self.rendered = diff.keep + [n.key for n in diff.add]
        return {"nodes": nodes, "diff": diff}

    def find_cluster(self, key: str, zoom: float) -> Optional[ClusterNode]:
        return self.engine.find_node(self.engine.cluster(self.visible, zoom), key)

    def keys(self, features: Sequence[Dict]) -> List[str]:
        """Identity key for each feature, as the cluster engine names its markers."""
        by_feature = {id(f): k for k, f, _, _ in self.engine.eligible(features)}
        return [by_feature.get(id(f)) or feature_key(f) for f in features]

    def select(self, key: str) -> Optional[Dict]:
        """Center on the club with this identity and ask for its popup.

        Lookup is by identity, so it works whatever the club's position in
        the filtered list. The visible list is searched first, then the full set.
        """
        for pool in (self.visible, self.features):
            match = next((f for k, f, _, _ in self.engine.eligible(pool) if k == key), None)
            if match is not None:
                break
        else:
            logger.warning(f"Selected club not found: {key}")
            return None
        target = self.engine.zoom_to_reveal(key, pool)
        if target is None:
            return None
        self.view = target
        return {"center": target["center"], "zoom": target["zoom"], "open_popup": key, "feature": match}

    def status(self) -> Dict:
        return {
            "state": self.state,
            "total": len(self.features),
            "visible": len(self.visible),
            "filters": {
                "city": self.filters.city,
                "day": self.filters.day,
                "q": self.filters.search_text,
                "lang": self.filters.language,
            },
            "from_cache": bool(getattr(self.loader, "last_load_from_cache", False)),
            "cities": available_cities(self.features),
        }

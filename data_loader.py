"""
Client data loader: fetch the club FeatureCollection, cache-first.
"""
import itertools
import logging
import threading
import time
from typing import Dict, Optional

import requests

from cache_store import CACHE_KEYS, CACHE_OPTIONS, CacheStore
from feature_collection import empty_collection, is_feature_collection

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10


class ClubDataLoader:
    """Loads clubs from GET /api/runclubs, serving a fresh cache entry when there is one.

    Every load takes a new generation number; a response from a superseded
    load is dropped instead of overwriting newer state.
    """

    def __init__(
        self,
        endpoint_url: str,
        cache: Optional[CacheStore] = None,
        ttl_seconds: int = CACHE_OPTIONS["RUN_CLUBS"]["ttl_seconds"],
        version: str = CACHE_OPTIONS["RUN_CLUBS"]["version"],
        session: Optional[requests.Session] = None,
        cache_key: str = CACHE_KEYS["RUN_CLUBS"],
    ):
        self.endpoint_url = endpoint_url
        self.cache = cache if cache is not None else CacheStore()
        self.ttl_seconds = ttl_seconds
        self.version = version
        self.session = session or requests.Session()
        self.cache_key = cache_key
        self.last_load_from_cache = False
        self.last_loaded_at: Optional[float] = None
        self.collection: Dict = empty_collection()
        self._generation = itertools.count(1)
        self._current = 0
        self._lock = threading.Lock()

    def _begin(self) -> int:
        with self._lock:
            self._current = next(self._generation)
            return self._current

    def is_current(self, token: int) -> bool:
        with self._lock:
            return token == self._current

    def _fetch(self) -> Optional[Dict]:
        try:
            resp = self.session.get(self.endpoint_url, timeout=REQUEST_TIMEOUT_SECONDS)
        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching clubs from {self.endpoint_url}: {e}")
            return None
        if resp.status_code != 200:
            logger.warning(f"Club endpoint returned {resp.status_code}")
            return None
        try:
            data = resp.json()
        except ValueError as e:
            logger.error(f"Club endpoint returned invalid JSON: {e}")
            return None
        if not is_feature_collection(data):
            logger.warning("Club endpoint returned something other than a FeatureCollection")
            return None
        return data

    def load(self, force_refresh: bool = False) -> Dict:
        """Return the current collection; never raises for network or payload problems."""
        token = self._begin()

        if not force_refresh:
            cached = self.cache.get(self.cache_key, self.ttl_seconds, self.version)
            if cached is not None and is_feature_collection(cached):
                self.last_load_from_cache = True
                self.last_loaded_at = time.time()
                self.collection = cached
                logger.info(f"Loaded {len(cached['features'])} club(s) from cache")
                return cached
            if cached is not None:
                logger.warning("Cached club data has an unexpected shape; discarding")
                self.cache.remove(self.cache_key)

        data = self._fetch()

        if not self.is_current(token):
            logger.info(f"Discarding superseded club response (load #{token})")
            return self.collection

        self.last_load_from_cache = False
        self.last_loaded_at = time.time()
        if data is None:
            self.collection = empty_collection()
            return self.collection

        self.cache.set(self.cache_key, data, self.version)
        self.collection = data
        logger.info(f"Loaded {len(data['features'])} club(s) from network")
        return data

    def refresh(self) -> Dict:
        self.cache.remove(self.cache_key)
        return self.load(force_refresh=True)

    def cache_status(self) -> Dict:
        age = self.cache.age_seconds(self.cache_key)
        stats = self.cache.stats()
        return {
            "is_from_cache": self.last_load_from_cache,
            "cache_age_minutes": round(age / 60) if age is not None else 0,
            "cache_size": stats["total_size"],
            "total_cached_items": stats["total_items"],
            "last_update": self.last_loaded_at,
        }

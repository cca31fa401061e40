#!/usr/bin/env python3
"""
Smoke check against a running RunClub map server.

Loads the clubs through the cache-first client loader, then exercises the
filter, bounds and cluster pipeline on the result.
"""
import os
import sys

import requests

from cache_store import CacheStore
from data_loader import ClubDataLoader
from view_controller import ViewController

WEB_HOST = os.environ.get("WEB_HOST", "localhost")
WEB_PORT = int(os.environ.get("WEB_PORT", "3001"))
BASE_URL = f"http://{WEB_HOST}:{WEB_PORT}"
RUNCLUBS_URL = f"{BASE_URL}/api/runclubs"
HEALTH_URL = f"{BASE_URL}/api/health"
CACHE_PATH = os.environ.get("CHECK_CACHE_PATH", ":memory:")


def check_api_connection():
    """Check the web server is up"""
    try:
        response = requests.get(HEALTH_URL, timeout=2)
        if response.status_code == 200:
            print("✅ Web API is running")
            return True
        print(f"❌ Web API returned status {response.status_code}")
        return False
    except requests.exceptions.ConnectionError:
        print("❌ Cannot connect to web API. Is web_server.py running?")
        return False
    except Exception as e:
        print(f"❌ Error: {e}")
        return False


def check_cors():
    """Preflight and method handling on /api/runclubs"""
    try:
        resp = requests.options(RUNCLUBS_URL, timeout=5)
        if resp.status_code != 200:
            print(f"❌ OPTIONS returned {resp.status_code}")
            return False
        resp = requests.post(RUNCLUBS_URL, json={}, timeout=5)
        if resp.status_code != 405:
            print(f"❌ POST returned {resp.status_code}, expected 405")
            return False
        print("✅ CORS preflight and 405 handling OK")
        return True
    except Exception as e:
        print(f"❌ Error checking CORS: {e}")
        return False


def check_pipeline():
    """Load clubs (twice, second from cache) and run the view pipeline"""
    loader = ClubDataLoader(RUNCLUBS_URL, cache=CacheStore(CACHE_PATH, namespace="check"))
    controller = ViewController(loader)
    view = controller.load()
    total = len(controller.features)
    print(f"✅ Loaded {total} club(s); initial view center={view['center']} zoom={view['zoom']}")

    controller.load()
    print(f"   Second load from cache: {loader.last_load_from_cache}")

    result = controller.render(view["zoom"])
    clusters = [n for n in result["nodes"] if n.kind == "cluster"]
    print(f"   {len(result['nodes'])} node(s) at zoom {view['zoom']} ({len(clusters)} cluster(s))")

    if controller.features:
        first = controller.status()["cities"][:1]
        if first:
            visible = controller.set_filter(city=first[0])
            print(f"   City filter {first[0]!r}: {len(visible)} club(s)")
    return True


if __name__ == "__main__":
    print("Checking RunClub Map server")
    print("=" * 50)
    print()

    if not check_api_connection():
        sys.exit(1)
    print()

    if not check_cors():
        sys.exit(1)
    print()

    if not check_pipeline():
        sys.exit(1)

    print()
    print("=" * 50)
    print("✅ All checks passed!")
    print()
    print(f"Open {BASE_URL} in your browser to see the map")

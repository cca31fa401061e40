#!/usr/bin/env python3
"""
RunClub Map Web Server - GeoJSON API and interactive map of run clubs
"""
import os
import logging
import signal
import sys
import threading
import time
from typing import Dict, Optional

from flask import Flask, render_template_string, jsonify, request, Response
from flask_cors import CORS
from dotenv import load_dotenv

from cache_store import CacheStore
from clustering import ClusterEngine, reconcile
from errors import ConfigInvalid
from feature_collection import build_from_source, empty_collection, is_feature_collection
from filters import DAY_TOKENS, FilterState, available_cities
from settings import Settings, load_settings
from sheet_source import row_source_from_settings
from spatial import DEFAULT_CENTER, DEFAULT_ZOOM, Bounds
from view_controller import ViewController

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

load_dotenv()  # Allow configuring via .env in production

app = Flask(__name__)
CORS(app, resources={r"/api/*": {"origins": "*"}}, methods=["GET", "OPTIONS"], allow_headers=["Content-Type"])

RUNCLUBS_CACHE_KEY = "runclubs-collection"
RUNCLUBS_METHODS = ["GET", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"]

services_lock = threading.Lock()
services: Dict = {}


class SheetClubLoader:
    """Server-side loader: row source -> FeatureCollection, memoized in the cache store."""

    def __init__(self, source, settings: Settings, cache: CacheStore):
        self.source = source
        self.settings = settings
        self.cache = cache
        self.last_load_from_cache = False

    def load(self, force_refresh: bool = False) -> Dict:
        if not force_refresh:
            cached = self.cache.get(RUNCLUBS_CACHE_KEY, self.settings.cache_ttl_seconds, self.settings.cache_version)
            if cached is not None and is_feature_collection(cached):
                self.last_load_from_cache = True
                return cached

        self.last_load_from_cache = False
        if self.source is None:
            logger.warning("No row source configured; serving an empty collection")
            return empty_collection()

        collection = build_from_source(self.source, self.settings.sheet_ranges, self.settings.schema_version)
        if collection["features"]:
            self.cache.set(RUNCLUBS_CACHE_KEY, collection, self.settings.cache_version)
        return collection


def init_services(settings: Optional[Settings] = None, row_source=None, cache: Optional[CacheStore] = None) -> Dict:
    """Explicitly wire settings, row source, cache and cluster engine into the app."""
    if settings is None:
        settings = load_settings()

    if row_source is None:
        try:
            row_source = row_source_from_settings(settings)
        except ConfigInvalid as e:
            logger.error(f"Row source not configured ({e}); the map will be empty")
            row_source = None

    if cache is None:
        cache = CacheStore(settings.cache_path, namespace="server")

    with services_lock:
        old_cache = services.get("cache")
        services.clear()
        services.update({
            "settings": settings,
            "cache": cache,
            "loader": SheetClubLoader(row_source, settings, cache),
            "engine": ClusterEngine.from_settings(settings),
            "start_time": time.time(),
        })
    if old_cache is not None and old_cache is not cache:
        old_cache.close()
    return services


def get_services() -> Dict:
    with services_lock:
        ready = bool(services)
    if not ready:
        try:
            init_services()
        except ConfigInvalid as e:
            logger.error(f"Invalid configuration ({e}); falling back to defaults")
            init_services(settings=Settings(), row_source=None)
    return services


def with_cors(resp: Response) -> Response:
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


def build_controller(args) -> ViewController:
    """A view controller over the current clubs with filters taken from the query string."""
    svc = get_services()
    controller = ViewController(svc["loader"], svc["engine"])
    controller.load(force_refresh=args.get("refresh") == "1")
    width = args.get("width", type=int)
    height = args.get("height", type=int)
    if width and height and width > 0 and height > 0:
        controller.set_viewport_size(width, height)
    controller.apply_filters(FilterState.from_mapping(args))
    return controller


def parse_viewport(args) -> Optional[Bounds]:
    try:
        values = [float(args[k]) for k in ("south", "west", "north", "east")]
    except (KeyError, TypeError, ValueError):
        return None
    return Bounds(*values)


@app.route('/')
def dashboard():
    """Map page"""
    return render_template_string(
        DASHBOARD_TEMPLATE,
        default_center=DEFAULT_CENTER,
        default_zoom=DEFAULT_ZOOM,
        days=list(DAY_TOKENS.keys()),
    )


@app.route('/api/runclubs', methods=RUNCLUBS_METHODS)
def get_runclubs():
    """All clubs as a GeoJSON FeatureCollection (empty on any failure)."""
    if request.method == "OPTIONS":
        return with_cors(Response("", 200))
    if request.method != "GET":
        return with_cors(jsonify({"error": "Method not allowed"})), 405

    try:
        svc = get_services()
        collection = svc["loader"].load(force_refresh=request.args.get("refresh") == "1")
        logger.info(f"Serving {len(collection['features'])} club(s)")
    except Exception as e:
        logger.error(f"Error building club collection: {e}")
        collection = empty_collection()
    return with_cors(jsonify(collection))


@app.route('/api/view')
def get_view():
    """Filtered clubs plus the center/zoom that fits them."""
    try:
        controller = build_controller(request.args)
        return jsonify({
            "features": controller.visible,
            "keys": controller.keys(controller.visible),
            "view": controller.view,
            "status": controller.status(),
        })
    except Exception as e:
        logger.error(f"View error: {e}")
        return jsonify({"features": [], "keys": [], "view": {"center": DEFAULT_CENTER, "zoom": DEFAULT_ZOOM}, "status": {"state": "ready", "total": 0, "visible": 0, "cities": []}})


@app.route('/api/clusters')
def get_clusters():
    """Cluster nodes for a zoom/viewport and the diff against the keys the client already shows."""
    zoom = request.args.get("zoom", default=DEFAULT_ZOOM, type=float)
    known = [k for k in request.args.getlist("known") if k]
    try:
        controller = build_controller(request.args)
        nodes = controller.engine.cluster(controller.visible, zoom, parse_viewport(request.args))
        diff = reconcile(known, nodes)
        return jsonify({
            "zoom": zoom,
            "nodes": [n.to_dict() for n in nodes],
            "diff": diff.to_dict(),
        })
    except Exception as e:
        logger.error(f"Cluster error: {e}")
        return jsonify({"zoom": zoom, "nodes": [], "diff": {"add": [], "remove": known, "keep": []}})


@app.route('/api/clusters/expand')
def expand_cluster():
    """Zoom-in target or spider legs for a clicked cluster."""
    key = request.args.get("key") or ""
    zoom = request.args.get("zoom", default=DEFAULT_ZOOM, type=float)
    try:
        controller = build_controller(request.args)
        node = controller.find_cluster(key, zoom)
        if node is None:
            return jsonify({"error": "cluster_not_found"}), 404
        return jsonify(controller.engine.expand(controller.visible, node, zoom))
    except Exception as e:
        logger.error(f"Expand error for {key}: {e}")
        return jsonify({"action": "none"})


@app.route('/api/select')
def select_club():
    """Center/zoom that shows one club as its own marker, and which popup to open."""
    key = request.args.get("key") or ""
    try:
        controller = build_controller(request.args)
        selection = controller.select(key)
    except Exception as e:
        logger.error(f"Select error for {key}: {e}")
        selection = None
    if not selection:
        return jsonify({"error": "club_not_found"}), 404
    return jsonify(selection)


@app.route('/api/cities')
def get_cities():
    try:
        collection = get_services()["loader"].load()
        return jsonify({"cities": available_cities(collection["features"])})
    except Exception as e:
        logger.error(f"Cities error: {e}")
        return jsonify({"cities": []})


@app.route('/api/cache', methods=['GET'])
def get_cache_status():
    svc = get_services()
    return jsonify(svc["cache"].stats())


@app.route('/api/cache/refresh', methods=['POST'])
def refresh_cache():
    """Drop the server-side club cache and rebuild from the row source."""
    svc = get_services()
    svc["cache"].remove(RUNCLUBS_CACHE_KEY)
    collection = svc["loader"].load(force_refresh=True)
    return jsonify({"status": "refreshed", "count": len(collection["features"])})


@app.route('/api/health')
def health():
    """Health check"""
    return jsonify({"status": "healthy", "timestamp": time.time()})


DASHBOARD_TEMPLATE = """
<!doctype html>
<html lang="fr">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>Run Clubs</title>
  <link rel="stylesheet" href="https://unpkg.com/leaflet@1.9.4/dist/leaflet.css" />
  <style>
    :root {
      --bg: #f5f7fb;
      --panel: #ffffff;
      --text: #111827;
      --muted: #6b7280;
      --border: #e5e7eb;
      --accent: #ff6b35;
      --shadow: 0 1px 2px rgba(0,0,0,.06), 0 10px 24px rgba(0,0,0,.05);
      --radius: 12px;
    }
    * { box-sizing: border-box; }
    html, body { height: 100%; margin: 0; }
    body {
      font-family: ui-sans-serif, system-ui, -apple-system, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
      background: var(--bg);
      color: var(--text);
      display: grid;
      grid-template-columns: 340px 1fr;
    }
    .panel { background: var(--panel); border-right: 1px solid var(--border); display: flex; flex-direction: column; min-height: 0; }
    .filters { padding: 12px; display: grid; gap: 8px; border-bottom: 1px solid var(--border); }
    .filters input, .filters select { padding: 8px; border: 1px solid var(--border); border-radius: 8px; }
    .row { display: flex; gap: 8px; }
    .linkbtn { background: none; border: 1px solid var(--border); border-radius: 8px; padding: 6px 10px; cursor: pointer; }
    .linkbtn.active { border-color: var(--accent); color: var(--accent); }
    #club-list { overflow-y: auto; flex: 1; }
    .club { padding: 12px; border-bottom: 1px solid var(--border); cursor: pointer; }
    .club:hover { background: var(--bg); }
    .club h4 { margin: 0 0 4px 0; color: var(--accent); }
    .club .meta { font-size: 12px; color: var(--muted); }
    .empty { padding: 16px; color: var(--muted); }
    #map { height: 100%; }
    .avatar { width: 36px; height: 36px; border-radius: 999px; border: 3px solid var(--accent); background: #fff; overflow: hidden; display: flex; align-items: center; justify-content: center; font-size: 18px; }
    .avatar img { width: 100%; height: 100%; object-fit: cover; }
    .cluster { width: 40px; height: 40px; border-radius: 999px; background: rgba(255,107,53,.85); color: #fff; font-weight: bold; display: flex; align-items: center; justify-content: center; border: 3px solid rgba(255,255,255,.9); }
    #loading { position: absolute; inset: 0; display: flex; align-items: center; justify-content: center; background: rgba(255,255,255,.7); z-index: 2000; }
  </style>
</head>
<body>
  <div class="panel">
    <div class="filters">
      <input id="search" type="search" placeholder="Rechercher..." />
      <div class="row">
        <select id="city"><option value="">Toutes les villes</option></select>
        <select id="day"><option value="">Tous les jours</option></select>
      </div>
      <div class="row">
        <button id="clear" class="linkbtn" type="button">Effacer</button>
        <button id="lang-fr" class="linkbtn active" type="button">FR</button>
        <button id="lang-en" class="linkbtn" type="button">EN</button>
        <span id="count" class="meta"></span>
      </div>
    </div>
    <div id="club-list"><div class="empty">Chargement...</div></div>
  </div>
  <div style="position: relative;">
    <div id="loading">Chargement de la carte...</div>
    <div id="map"></div>
  </div>

  <script src="https://unpkg.com/leaflet@1.9.4/dist/leaflet.js"></script>
  <script>
    const DEFAULT_CENTER = {{ default_center|tojson }};
    const DEFAULT_ZOOM = {{ default_zoom|tojson }};
    const DAYS = {{ days|tojson }};
    const DAY_LABELS = {
      fr: { monday: "Lundi", tuesday: "Mardi", wednesday: "Mercredi", thursday: "Jeudi", friday: "Vendredi", saturday: "Samedi", sunday: "Dimanche" },
      en: { monday: "Monday", tuesday: "Tuesday", wednesday: "Wednesday", thursday: "Thursday", friday: "Friday", saturday: "Saturday", sunday: "Sunday" }
    };

    const filters = { city: "", day: "", q: "", lang: "fr" };
    const drawn = new Map();
    let map = null;
    let nodeLayer = null;
    let spiderLayer = null;
    let pendingPopup = null;
    let renderSeq = 0;

    function escapeHtml(text) {
      const div = document.createElement("div");
      div.textContent = String(text || "");
      return div.innerHTML;
    }

    function query(extra) {
      const params = new URLSearchParams(Object.assign({}, filters, extra || {}));
      return params.toString();
    }

    function localized(props, field) {
      if (filters.lang === "en") return props[field + "_secondary"] || props[field] || "";
      return props[field] || "";
    }

    function popupHtml(feature, links) {
      const p = feature.properties || {};
      let html = "<div style='min-width: 220px;'>";
      html += "<h3 style='margin: 0 0 8px 0; color: #ff6b35;'>" + escapeHtml(localized(p, "name")) + "</h3>";
      if (p.city) html += "<div>" + escapeHtml(p.city) + "</div>";
      const freq = localized(p, "frequency");
      if (freq) html += "<div><b>" + escapeHtml(freq) + "</b></div>";
      const desc = localized(p, "description");
      if (desc) html += "<p>" + escapeHtml(desc) + "</p>";
      for (const provider of Object.keys(links || {})) {
        const url = links[provider];
        html += "<a href='" + escapeHtml(url) + "' target='_blank' rel='noopener noreferrer' style='margin-right: 8px;'>" + escapeHtml(provider) + "</a>";
      }
      html += "</div>";
      return html;
    }

    function avatarIcon(icon) {
      const glyph = escapeHtml(icon.fallback);
      let inner = glyph;
      if (icon.image) {
        inner = "<img src='" + escapeHtml(icon.image) + "' alt='" + escapeHtml(icon.alt) + "' onerror=\\"this.parentNode.textContent='" + glyph + "'\\" />";
      }
      return L.divIcon({ className: "", html: "<div class='avatar'>" + inner + "</div>", iconSize: [36, 36], iconAnchor: [18, 18] });
    }

    function clusterIcon(count) {
      return L.divIcon({ className: "", html: "<div class='cluster'>" + count + "</div>", iconSize: [40, 40], iconAnchor: [20, 20] });
    }

    function clearSpider() {
      if (spiderLayer) spiderLayer.clearLayers();
    }

    function layerForNode(node) {
      if (node.kind === "marker") {
        const m = L.marker([node.lat, node.lon], { icon: avatarIcon(node.icon) });
        m.bindPopup(popupHtml(node.feature, node.links));
        return m;
      }
      const m = L.marker([node.lat, node.lon], { icon: clusterIcon(node.count) });
      m.on("click", () => expandCluster(node));
      return m;
    }

    function applyDiff(diff) {
      for (const key of diff.remove) {
        const layer = drawn.get(key);
        if (layer) nodeLayer.removeLayer(layer);
        drawn.delete(key);
      }
      for (const node of diff.add) {
        const layer = layerForNode(node);
        drawn.set(node.key, layer);
        nodeLayer.addLayer(layer);
      }
      if (pendingPopup && drawn.has("m:" + pendingPopup)) {
        drawn.get("m:" + pendingPopup).openPopup();
        pendingPopup = null;
      }
    }

    async function renderNodes() {
      const seq = ++renderSeq;
      const b = map.getBounds();
      const params = new URLSearchParams(query({
        zoom: map.getZoom(),
        south: b.getSouth(), west: b.getWest(), north: b.getNorth(), east: b.getEast()
      }));
      for (const key of drawn.keys()) params.append("known", key);
      const qs = params.toString();
      try {
        const resp = await fetch("/api/clusters?" + qs);
        const data = await resp.json();
        if (seq !== renderSeq) return;
        clearSpider();
        applyDiff(data.diff);
      } catch (e) {}
    }

    async function expandCluster(node) {
      const resp = await fetch("/api/clusters/expand?" + query({ key: node.key, zoom: map.getZoom() }));
      if (!resp.ok) return;
      const data = await resp.json();
      if (data.action === "zoom") {
        map.setView(data.center, data.zoom);
      } else if (data.action === "spiderfy") {
        clearSpider();
        for (const leg of data.legs) {
          L.polyline([leg.origin, [leg.lat, leg.lon]], { color: "#ff6b35", weight: 1.5 }).addTo(spiderLayer);
          L.marker([leg.lat, leg.lon], { icon: clusterIcon(1) }).on("click", () => selectClub(leg.key)).addTo(spiderLayer);
        }
      }
    }

    async function selectClub(key) {
      const resp = await fetch("/api/select?" + query({ key: key }));
      if (!resp.ok) return;
      const data = await resp.json();
      pendingPopup = data.open_popup;
      map.setView(data.center, data.zoom);
      renderNodes();
    }

    function renderList(features, keys) {
      const list = document.getElementById("club-list");
      document.getElementById("count").textContent = features.length + " club(s)";
      if (!features.length) {
        list.innerHTML = "<div class='empty'>" + (filters.lang === "en" ? "No results" : "Aucun résultat") + "</div>";
        return;
      }
      list.innerHTML = "";
      features.forEach((f, i) => {
        const p = f.properties || {};
        const el = document.createElement("div");
        el.className = "club";
        el.innerHTML = "<h4>" + escapeHtml(localized(p, "name")) + "</h4><div class='meta'>" + escapeHtml(p.city) + " · " + escapeHtml(localized(p, "frequency")) + "</div>";
        el.addEventListener("click", () => selectClub(keys[i]));
        list.appendChild(el);
      });
    }

    function fillSelects(cities) {
      const city = document.getElementById("city");
      const current = city.value;
      city.innerHTML = "<option value=''>" + (filters.lang === "en" ? "All cities" : "Toutes les villes") + "</option>";
      for (const c of cities) city.innerHTML += "<option>" + escapeHtml(c) + "</option>";
      city.value = current;
      const day = document.getElementById("day");
      const currentDay = day.value;
      day.innerHTML = "<option value=''>" + (filters.lang === "en" ? "All days" : "Tous les jours") + "</option>";
      for (const d of DAYS) day.innerHTML += "<option value='" + d + "'>" + DAY_LABELS[filters.lang][d] + "</option>";
      day.value = currentDay;
    }

    async function refreshView() {
      const size = map.getSize();
      try {
        const resp = await fetch("/api/view?" + query({ width: size.x, height: size.y }));
        const data = await resp.json();
        fillSelects(data.status.cities || []);
        renderList(data.features || [], data.keys || []);
        if (data.features && data.features.length) map.setView(data.view.center, data.view.zoom);
      } catch (e) {
        renderList([], []);
      }
      document.getElementById("loading").style.display = "none";
      renderNodes();
    }

    function setLang(lang) {
      filters.lang = lang;
      document.getElementById("lang-fr").classList.toggle("active", lang === "fr");
      document.getElementById("lang-en").classList.toggle("active", lang === "en");
      refreshView();
    }

    function init() {
      map = L.map("map", { zoomControl: true });
      map.setView(DEFAULT_CENTER, DEFAULT_ZOOM);
      L.tileLayer("https://{s}.basemaps.cartocdn.com/light_all/{z}/{x}/{y}{r}.png", {
        maxZoom: 19, subdomains: "abcd", attribution: "&copy; OpenStreetMap contributors &copy; CARTO"
      }).addTo(map);
      nodeLayer = L.layerGroup().addTo(map);
      spiderLayer = L.layerGroup().addTo(map);
      map.on("moveend", renderNodes);

      let searchTimer = null;
      document.getElementById("search").addEventListener("input", (e) => {
        clearTimeout(searchTimer);
        searchTimer = setTimeout(() => { filters.q = e.target.value; refreshView(); }, 250);
      });
      document.getElementById("city").addEventListener("change", (e) => { filters.city = e.target.value; refreshView(); });
      document.getElementById("day").addEventListener("change", (e) => { filters.day = e.target.value; refreshView(); });
      document.getElementById("clear").addEventListener("click", () => {
        filters.city = ""; filters.day = ""; filters.q = "";
        document.getElementById("search").value = "";
        document.getElementById("city").value = "";
        document.getElementById("day").value = "";
        refreshView();
      });
      document.getElementById("lang-fr").addEventListener("click", () => setLang("fr"));
      document.getElementById("lang-en").addEventListener("click", () => setLang("en"));
      refreshView();
    }

    init();
  </script>
</body>
</html>
"""


def signal_handler(sig, frame):
    """Handle shutdown signals"""
    logger.info("Shutting down web server...")
    cache = services.get("cache")
    if cache is not None:
        cache.close()
    sys.exit(0)


if __name__ == "__main__":
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        svc = init_services()
    except ConfigInvalid as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    settings = svc["settings"]
    host = os.environ.get("WEB_HOST", settings.web_host)
    port = int(os.environ.get("WEB_PORT", settings.web_port))

    logger.info(f"Starting RunClub Map Web Server on {host}:{port}")
    logger.info(f"Map available at: http://{host}:{port}")
    logger.info(f"API available at: http://{host}:{port}/api/runclubs")

    app.run(host=host, port=port, debug=False, threaded=True)

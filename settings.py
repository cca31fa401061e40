"""
Configuration loading for the RunClub map service.

Settings come from config.yaml (deep-merged with config.local.yaml) and are
then overridden by environment variables, which may be provided through a
.env file. Nothing here runs at import time: callers build a Settings object
explicitly with load_settings().
"""
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv

from errors import ConfigInvalid
from row_normalizer import SchemaVersion

logger = logging.getLogger(__name__)

CONFIG_FILE = Path("config.yaml")
CONFIG_LOCAL_FILE = Path("config.local.yaml")

DEFAULT_SHEET_RANGES = [
    "Feuille1!A2:O",
    "Sheet1!A2:O",
    "Feuille 1!A2:O",
    "A2:O",
]


@dataclass
class Settings:
    spreadsheet_id: str = ""
    service_account_file: str = "keys/google-service-account.json"
    service_account_json: str = ""
    sheet_ranges: List[str] = field(default_factory=lambda: list(DEFAULT_SHEET_RANGES))
    schema_version: SchemaVersion = SchemaVersion.CURRENT
    data_file: str = ""
    cache_path: str = ":memory:"
    cache_ttl_seconds: int = 30 * 60
    cache_version: str = "1.0.0"
    image_base_path: str = "/images/"
    max_cluster_radius: int = 80
    disable_clustering_at_zoom: int = 16
    web_host: str = "0.0.0.0"
    web_port: int = 3001


def deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        merged = dict(base)
        for key, value in override.items():
            merged[key] = deep_merge(base.get(key), value)
        return merged
    # Lists and scalars: override wins
    return override


def load_yaml_config(config_file: Path = CONFIG_FILE, local_file: Path = CONFIG_LOCAL_FILE) -> Dict:
    """Load config.yaml and config.local.yaml (both optional)."""
    base_config: Dict = {}
    local_config: Dict = {}

    try:
        if config_file.exists():
            with open(config_file, "r") as f:
                base_config = yaml.safe_load(f) or {}
        if local_file.exists():
            with open(local_file, "r") as f:
                local_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"Could not parse YAML config: {e}") from e

    for name, cfg in ((config_file, base_config), (local_file, local_config)):
        if not isinstance(cfg, dict):
            raise ConfigInvalid(f"{name} must contain a mapping at the top level")

    if local_config:
        return deep_merge(base_config, local_config)  # type: ignore[return-value]
    return base_config


def _as_int(name: str, value: object) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ConfigInvalid(f"{name} must be an integer, got {value!r}")


def _as_ranges(value: object) -> List[str]:
    if isinstance(value, str):
        ranges = [r.strip() for r in value.split(",")]
    elif isinstance(value, list):
        ranges = [str(r).strip() for r in value]
    else:
        raise ConfigInvalid(f"sheet ranges must be a list or comma-separated string, got {value!r}")
    ranges = [r for r in ranges if r]
    if not ranges:
        raise ConfigInvalid("At least one sheet range is required")
    return ranges


def settings_from_mapping(config: Dict, env: Optional[Dict[str, str]] = None) -> Settings:
    """Build Settings from a parsed config mapping plus environment overrides."""
    env = dict(os.environ if env is None else env)
    sheet_cfg = config.get("sheet", {}) or {}
    cache_cfg = config.get("cache", {}) or {}
    map_cfg = config.get("map", {}) or {}
    server_cfg = config.get("server", {}) or {}

    settings = Settings()
    settings.spreadsheet_id = str(env.get("SPREADSHEET_ID") or sheet_cfg.get("spreadsheet_id") or "")
    settings.service_account_file = str(
        env.get("GOOGLE_SERVICE_ACCOUNT_FILE") or sheet_cfg.get("service_account_file") or settings.service_account_file
    )
    settings.service_account_json = str(env.get("GOOGLE_SERVICE_ACCOUNT_JSON") or "")
    settings.sheet_ranges = _as_ranges(env.get("SHEET_RANGES") or sheet_cfg.get("ranges") or DEFAULT_SHEET_RANGES)
    settings.schema_version = SchemaVersion.parse(
        env.get("SCHEMA_VERSION") or sheet_cfg.get("schema_version") or SchemaVersion.CURRENT.value
    )
    settings.data_file = str(env.get("DATA_FILE") or sheet_cfg.get("data_file") or "")

    settings.cache_path = str(env.get("CACHE_PATH") or cache_cfg.get("path") or settings.cache_path)
    settings.cache_ttl_seconds = _as_int(
        "CACHE_TTL_SECONDS", env.get("CACHE_TTL_SECONDS") or cache_cfg.get("ttl_seconds") or settings.cache_ttl_seconds
    )
    settings.cache_version = str(cache_cfg.get("version") or settings.cache_version)

    settings.image_base_path = str(env.get("IMAGE_BASE_PATH") or map_cfg.get("image_base_path") or settings.image_base_path)
    settings.max_cluster_radius = _as_int(
        "MAX_CLUSTER_RADIUS", env.get("MAX_CLUSTER_RADIUS") or map_cfg.get("max_cluster_radius") or settings.max_cluster_radius
    )
    settings.disable_clustering_at_zoom = _as_int(
        "DISABLE_CLUSTERING_AT_ZOOM",
        env.get("DISABLE_CLUSTERING_AT_ZOOM") or map_cfg.get("disable_clustering_at_zoom") or settings.disable_clustering_at_zoom,
    )

    settings.web_host = str(env.get("WEB_HOST") or server_cfg.get("host") or settings.web_host)
    settings.web_port = _as_int("WEB_PORT", env.get("WEB_PORT") or server_cfg.get("port") or settings.web_port)

    if settings.cache_ttl_seconds <= 0:
        raise ConfigInvalid("cache TTL must be positive")
    if settings.max_cluster_radius <= 0:
        raise ConfigInvalid("max_cluster_radius must be positive")
    return settings


def load_settings(config_file: Path = CONFIG_FILE, local_file: Path = CONFIG_LOCAL_FILE) -> Settings:
    """Load .env, YAML config files and environment into a Settings object."""
    load_dotenv()
    config = load_yaml_config(config_file, local_file)
    if not config:
        logger.info(f"No {config_file} or {local_file} found; using defaults and environment")
    return settings_from_mapping(config)

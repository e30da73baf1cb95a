"""Application configuration.

Settings come from environment variables, optionally overlaid by a YAML
file named in ``REGBRIDGE_CONFIG``. Values in the YAML file use the field
names of ``Settings``; environment variables win over the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml

NUGET_SEARCH_URL = "https://azuresearch-usnc.nuget.org/query"
NUGET_REGISTRATION_URL = "https://api.nuget.org/v3/registration5-semver1"
NUGET_FLAT_CONTAINER_URL = "https://api.nuget.org/v3-flatcontainer"
NUGET_CATALOG_INDEX_URL = "https://api.nuget.org/v3/catalog0/index.json"


@dataclass
class Settings:
    """Settings shared by the adapter, the gateway and the CLI."""

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    base_url: str = ""
    api_key: str = ""
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])

    # Cache and synchronization
    cache_dir: str = ""
    cache_backend: str = "snapshot"
    upstream_timeout: float = 15.0
    resolution_timeout: float = 5.0
    sync_enabled: bool = True
    sync_interval_seconds: int = 3600
    sync_lookback_hours: int = 24
    snapshot_interval_seconds: int = 300

    # Query limits
    max_versions_scan: int = 100
    max_metadata_fetches: int = 20
    max_tracked_entities: int = 50_000
    default_page_limit: int = 50
    max_page_limit: int = 1000

    # NuGet upstream
    nuget_search_url: str = NUGET_SEARCH_URL
    nuget_registration_url: str = NUGET_REGISTRATION_URL
    nuget_flat_container_url: str = NUGET_FLAT_CONTAINER_URL
    nuget_catalog_index_url: str = NUGET_CATALOG_INDEX_URL

    # Gateway
    downstreams_json: str = ""
    downstreams_file: str = "downstreams.json"
    startup_wait_seconds: float = 60.0
    retry_interval_seconds: float = 60.0
    health_timeout_seconds: float = 10.0
    proxy_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    def __post_init__(self):
        if self.default_page_limit <= 0:
            raise ValueError("default_page_limit must be greater than 0")
        if self.max_page_limit < self.default_page_limit:
            raise ValueError("max_page_limit must not be smaller than default_page_limit")


def _coerce(value: Any, default: Any) -> Any:
    """Coerce a raw string (or YAML scalar) to the type of ``default``."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("true", "1", "yes")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, list):
        if isinstance(value, list):
            return [str(item) for item in value]
        return [item.strip() for item in str(value).split(",") if item.strip()]
    return str(value)


def load_yaml_overlay(path: str | Path) -> dict[str, Any]:
    """Read a YAML settings file; unknown keys are rejected."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys in {path}: {', '.join(unknown)}")
    return data


def load_settings_from_env(environ: Optional[dict[str, str]] = None) -> Settings:
    """Build ``Settings`` from the environment (and the optional YAML file).

    Every field maps to the upper-cased field name, e.g. ``cache_dir`` is
    read from ``CACHE_DIR``.
    """
    env = os.environ if environ is None else environ
    defaults = Settings()
    values: dict[str, Any] = {}

    config_path = env.get("REGBRIDGE_CONFIG")
    if config_path:
        for key, raw in load_yaml_overlay(config_path).items():
            values[key] = _coerce(raw, getattr(defaults, key))

    for f in fields(Settings):
        raw = env.get(f.name.upper())
        if raw is not None and raw != "":
            values[f.name] = _coerce(raw, getattr(defaults, f.name))

    return Settings(**values)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings_from_env()

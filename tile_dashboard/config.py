# tile_dashboard/config.py
from __future__ import annotations
import copy
import os
from pathlib import Path
from typing import Any, Dict

import yaml

from tile_dashboard.errors import ConfigError

REQUIRED_KEYS = ["meta", "datasets", "tiles", "reports"]

DEFAULT_TAGS = [
    "a", "abbr", "b", "blockquote", "br", "code", "em", "i", "li", "ol", "p", "pre",
    "strong", "ul", "h4", "h5", "h6", "span", "table", "thead", "tbody", "tr", "th", "td",
]

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "cache": {"maxsize": 256, "ttl_s": 300},
    "pool": {"max_size": 4, "timeout_s": 5.0},
    "sanitize": {
        "tags": DEFAULT_TAGS,
        "attributes": {"a": ["href", "title", "rel"], "abbr": ["title"]},
        "protocols": ["http", "https", "mailto"],
    },
    "server": {"host": "127.0.0.1", "port": 8050, "debug": False},
    "dates": {"default_days": 30, "max_days": 366},
}

# env var -> (section, key, caster)
ENV_OVERRIDES = {
    "TD_DATA_DIR": ("meta", "data_dir", str),
    "TD_DB_PATH": ("meta", "db_path", str),
    "TD_CACHE_TTL_S": ("cache", "ttl_s", float),
    "TD_LOG_LEVEL": ("meta", "log_level", str),
    "PORT": ("server", "port", int),
}


def _apply_defaults(cfg: dict) -> dict:
    for section, values in DEFAULTS.items():
        merged = copy.deepcopy(values)
        merged.update(cfg.get(section) or {})
        cfg[section] = merged
    meta = cfg["meta"]
    meta.setdefault("title", "Tile Dashboard")
    meta.setdefault("source", "csv")
    meta.setdefault("data_dir", "data")
    meta.setdefault("db_path", "data/dashboard.sqlite")
    meta.setdefault("log_level", "INFO")
    if meta["source"] not in ("csv", "sqlite"):
        raise ConfigError(f"meta.source must be 'csv' or 'sqlite', got {meta['source']!r}")
    return cfg


def _apply_env(cfg: dict) -> dict:
    for var, (section, key, cast) in ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            cfg[section][key] = cast(raw)
        except ValueError as e:
            raise ConfigError(f"{var}={raw!r} is not a valid {cast.__name__}") from e
    return cfg


def _resolve_paths(cfg: dict, base: Path) -> dict:
    meta = cfg["meta"]
    for key in ("data_dir", "db_path"):
        p = Path(meta[key])
        if not p.is_absolute():
            p = base / p
        meta[key] = p.as_posix()
    return cfg


def load_config(path: str | Path) -> dict:
    p = Path(path)
    try:
        cfg = yaml.safe_load(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config {p}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigError(f"Config {p} must be a mapping")
    missing = [k for k in REQUIRED_KEYS if k not in cfg]
    if missing:
        raise ConfigError(f"Config missing keys: {missing}")
    cfg["meta"] = cfg["meta"] or {}
    cfg = _apply_defaults(cfg)
    cfg = _apply_env(cfg)
    cfg = _resolve_paths(cfg, p.resolve().parent)
    cfg["meta"]["config_path"] = p.resolve().as_posix()
    return cfg

# gs_platform/config_base.py
# config.json location, defaults and atomic persistence.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import copy
import json
import os
import secrets
import threading
import time
from pathlib import Path
from typing import Any, Dict


# ------------------------------------------------------------
# Base dir resolution
# ------------------------------------------------------------
def CONFIG_BASE() -> Path:
    """
    Determine the base directory for config files.

    Priority:
      1) $CONFIG_BASE if set
      2) /config (when running in container that mounts /config)
      3) Project root (one level up from this package)
    """
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/app").exists():
        return Path("/config")

    return Path(__file__).resolve().parents[1]


# Default config structure
DEFAULT_CFG: Dict[str, Any] = {
    # --- Runtime -------------------------------------------------------------
    "runtime": {
        "debug": False,                                 # Verbose debug logging.
        "log_level": "info",                            # silent | error | warn | info | debug
        "log_json": "",                                 # Optional JSON-lines log file path.
    },

    # --- Upstream catalog ----------------------------------------------------
    "catalog": {
        "repo": "TRaSH-Guides/Guides",                  # owner/name of the catalog repository.
        "branch": "master",                             # Branch tracked for "latest".
        "api_url": "https://api.github.com",            # GitHub REST base.
        "raw_url": "https://raw.githubusercontent.com", # Raw file host.
        "timeout": 15.0,                                # HTTP timeout (seconds).
        "max_retries": 3,                               # Retry budget per request.
        "quality_order": "highest_first",               # Order of quality items in catalog blueprints: highest_first | lowest_first
    },

    # --- Remote *arr instances -----------------------------------------------
    "arr": {
        "timeout": 15.0,                                # HTTP timeout (seconds).
        "max_retries": 3,                               # Retry budget per request.
        "verify_ssl": True,                             # Verify TLS certificates.
    },

    # --- Deployment ----------------------------------------------------------
    "deploy": {
        "max_workers": 4,                               # Parallel instances in a bulk deployment.
        "backup_retention_days": 30,                    # 0 = keep backups forever.
        "default_profile_name": "TRaSH Guides HD/UHD",  # Profile name when a template declares none.
    },

    # --- Update detection / auto-sync ----------------------------------------
    "updates": {
        "recent_window_hours": 24,                      # Surface templates auto-synced within this window.
        "interval_minutes": 60,                         # Scheduler tick.
    },

    # --- Persistence ---------------------------------------------------------
    "store": {
        "path": "guidesync.json",                       # Relative to CONFIG_BASE.
    },
}


# ------------------------------------------------------------
# Helpers: paths, IO, merging
# ------------------------------------------------------------
def _cfg_file() -> Path:
    return CONFIG_BASE() / "config.json"


def config_path() -> Path:
    return _cfg_file()


def _read_json(p: Path) -> Dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def _write_json_atomic(p: Path, data: Any) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = f".{time.time_ns()}.{os.getpid()}.{threading.get_ident()}.{secrets.token_hex(4)}.tmp"
    tmp = p.with_suffix(suffix)

    with tmp.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    tmp.replace(p)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _normalize(cfg: Dict[str, Any]) -> Dict[str, Any]:
    cat = cfg["catalog"]
    order = str(cat.get("quality_order") or "").strip().lower()
    if order not in ("lowest_first", "highest_first"):
        order = DEFAULT_CFG["catalog"]["quality_order"]
    cat["quality_order"] = order

    dep = cfg["deploy"]
    dep["max_workers"] = max(1, int(dep.get("max_workers") or 1))
    dep["backup_retention_days"] = max(0, int(dep.get("backup_retention_days") or 0))
    return cfg


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------
def load_config() -> Dict[str, Any]:
    """
    Read config.json merged over DEFAULT_CFG.
    """
    p = _cfg_file()
    user_cfg: Dict[str, Any] = {}
    if p.exists():
        try:
            user_cfg = _read_json(p)
        except (OSError, ValueError):
            user_cfg = {}
    if not isinstance(user_cfg, dict):
        user_cfg = {}
    return _normalize(_deep_merge(DEFAULT_CFG, user_cfg))


def save_config(cfg: Dict[str, Any]) -> None:
    """
    Write to config.json
    """
    _write_json_atomic(_cfg_file(), dict(cfg or {}))

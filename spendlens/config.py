# spendlens/config.py
from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Dict

import yaml

DEFAULT_CONFIG: Dict[str, object] = {
    "store": {
        "backend": "sqlite",
        "db_path": "spendlens.db",
        "url": None,
        "service_key": None,
        "anon_key": None,
    },
    "store_backends": {
        "sqlite": "spendlens.stores.sqlite.SQLiteStore",
        "supabase": "spendlens.stores.supabase_store.SupabaseStore",
    },
    "import": {
        "api_key": None,
        "batch_size": 500,
        "strategy": "delete_reinsert",
        "sample_size": 5,
    },
    "recurring": {
        "lookback_days": 90,
        "min_occurrences": 3,
        "min_interval": 6,
        "max_interval": 40,
        "max_stddev": 15,
        "weekly_max_interval": 10,
    },
    "summary": {
        "weeks": 26,
        "net_flow_days": 30,
        "top_categories": 5,
        "top_payees": 10,
        "unmapped_payees": 10,
        "cache_ttl_seconds": 300,
        "fetch_limit": 10000,
    },
}

# environment variable -> (section, key)
_ENV_OVERRIDES = {
    "SPENDLENS_IMPORT_API_KEY": ("import", "api_key"),
    "SPENDLENS_STORE_BACKEND": ("store", "backend"),
    "SPENDLENS_STORE_URL": ("store", "url"),
    "SPENDLENS_STORE_SERVICE_KEY": ("store", "service_key"),
    "SPENDLENS_STORE_ANON_KEY": ("store", "anon_key"),
    "SPENDLENS_DB_PATH": ("store", "db_path"),
}


def _merge_defaults(current: Dict[str, object], defaults: Dict[str, object]) -> Dict[str, object]:
    """Merge missing default keys into the current config recursively."""
    merged = dict(current)
    for key, value in defaults.items():
        if key not in merged:
            merged[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(merged[key], dict):
            merged[key] = _merge_defaults(merged[key], value)
    return merged


def _apply_env(config: Dict[str, object]) -> Dict[str, object]:
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            config[section][key] = value  # type: ignore[index]
    return config


def load_config(path: str | Path | None = None) -> Dict[str, object]:
    """Load a YAML config file, fill in defaults and apply env overrides.

    A missing file is not an error; the defaults are used instead so the
    service can run purely from environment variables.
    """
    data: Dict[str, object] = {}
    if path is not None:
        target = Path(path)
        if target.exists():
            with target.open("r", encoding="utf-8") as fp:
                data = yaml.safe_load(fp) or {}
    return _apply_env(_merge_defaults(data, DEFAULT_CONFIG))

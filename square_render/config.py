from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from square_render.exploration import (
    ExplorationStore,
    HttpExplorationStore,
    JsonExplorationStore,
    MemoryExplorationStore,
)
from square_render.layers import DEFAULT_BASE_URL, DEFAULT_IMAGES_PATH


DEFAULT_CONFIG: Dict[str, Any] = {
    "render": {"width": 2400, "height": 1666, "compression": 6},
    "layers": {"base_url": DEFAULT_BASE_URL, "images_path": DEFAULT_IMAGES_PATH},
    "fetch": {"ttl_s": 300, "max_entries": 200, "timeout_s": 10.0, "max_workers": 8},
    "exploration": {"backend": "none", "json_path": "data/exploration.json", "http_url": "", "timeout_s": 2.0},
    "http": {"cache_max_age_s": 60, "cors_origins": ["*"]},
    "snapshot": {"width": 800, "height": 556},
    "logging": {"level": "INFO"},
}


def merge_config(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Recursive dict merge; `override` wins, `base` is left untouched."""
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = merge_config(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load YAML config on top of DEFAULT_CONFIG.
    Path precedence: explicit arg, env SQUARE_RENDER_CONFIG, config/params.yaml.
    A missing file means defaults only.
    """
    path = path or os.environ.get("SQUARE_RENDER_CONFIG") or "config/params.yaml"
    if not Path(path).exists():
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(path, "r") as f:
        return merge_config(DEFAULT_CONFIG, yaml.safe_load(f) or {})


def build_store(cfg: Dict[str, Any]) -> Optional[ExplorationStore]:
    """Exploration backend from the `exploration` config section; None disables lookups."""
    backend = str(cfg.get("backend", "none")).lower()
    if backend == "json":
        return JsonExplorationStore(cfg.get("json_path", "data/exploration.json"))
    if backend == "http":
        return HttpExplorationStore(cfg["http_url"], timeout_s=float(cfg.get("timeout_s", 2.0)))
    if backend == "memory":
        return MemoryExplorationStore()
    return None

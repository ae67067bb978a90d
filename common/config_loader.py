# common/config_loader.py
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

from common.logging_config import get_logger

_log = get_logger("config")

SCHEDULING_DEFAULTS: Dict[str, int] = {
    "default_duration_min": 60,
    "start_time_step_min": 60,
    "available_dates_days": 30,
}


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load YAML from path, CONFIG_PATH or ./config.yaml, with safe defaults."""
    config_path = Path(path or os.getenv("CONFIG_PATH", "config.yaml"))
    if not config_path.exists():
        _log.debug("Config file not found at %s. Using built-in defaults.", config_path)
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        _log.error("Failed to parse %s: %s. Using built-in defaults.", config_path, e)
        return {}


def cfg_get(d: Dict[str, Any], path: str, default=None):
    """Safely fetch a nested key via dotted path, e.g. cfg_get(cfg, 'scheduling.start_time_step_min')."""
    cur = d
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur


def scheduling_setting(name: str, cfg: Optional[Dict[str, Any]] = None) -> int:
    """Integer scheduling knob from the YAML config, falling back to SCHEDULING_DEFAULTS."""
    if cfg is None:
        cfg = load_config()
    value = cfg_get(cfg, f"scheduling.{name}", SCHEDULING_DEFAULTS[name])
    try:
        return int(value)
    except (TypeError, ValueError):
        _log.warning("scheduling.%s=%r is not an integer; using %s", name, value, SCHEDULING_DEFAULTS[name])
        return SCHEDULING_DEFAULTS[name]

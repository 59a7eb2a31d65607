"""
Tracker defaults and data directory.

Defaults come from `config/tracker.yml` next to the source tree, or from the
file named by BILL_TRACKER_DEFAULTS. Each top-level section of that file is
laid over the matching section of DEFAULTS key by key, so a file that sets
only `sync.busy_policy` keeps the default `sync.interval_minutes`. A missing
file means DEFAULTS as-is.

Per-user state (configuration, tracking records, history, lock) lives under
BILL_TRACKER_DATA_DIR, default `~/.bill_tracker`.
"""

import logging
import os

import yaml

logger = logging.getLogger(__name__)

DEFAULTS = {
    "scan": {
        "extensions": [".pdf", ".doc", ".docx", ".jpg", ".jpeg", ".png", ".json", ".peiplbill", ".peipl", ".xlsx"],
        "skip_hidden": True,
    },
    "history": {"capacity": 10},
    "sync": {"interval_minutes": 30, "busy_policy": "drop"},
    "reminders": {"notice_days": 3},
    "lock": {"timeout_seconds": 3600},
    "orphans": {"min_similarity": 0.85},
}


def get_data_dir() -> str:
    """Read from the environment on every call so tests can monkeypatch it."""
    return os.getenv("BILL_TRACKER_DATA_DIR", os.path.join(os.path.expanduser("~"), ".bill_tracker"))


def _defaults_path() -> str:
    return os.getenv("BILL_TRACKER_DEFAULTS") or os.path.join(
        os.path.dirname(os.path.dirname(__file__)), "config", "tracker.yml"
    )


def _overlay(section: str, default, override):
    if override is None:
        return default
    if isinstance(default, dict):
        if not isinstance(override, dict):
            raise ValueError(f"section {section!r} must be a mapping, got {type(override).__name__}")
        return {**default, **override}
    return override


def load_tracker_defaults(path: str = None) -> dict:
    path = path or _defaults_path()
    merged = {k: dict(v) for k, v in DEFAULTS.items()}
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.debug("No tracker defaults at %s, using built-ins", path)
        return merged
    if not isinstance(cfg, dict):
        raise ValueError(f"{path} must hold a mapping of sections")

    for section, value in cfg.items():
        if section not in merged:
            logger.warning("Unknown section %r in %s", section, path)
        merged[section] = _overlay(section, merged.get(section), value)
    return merged

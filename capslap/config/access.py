"""Process-local cache in front of load_config."""

from __future__ import annotations

import threading
from pathlib import Path

from capslap.config.loader import get_config_path, load_config
from capslap.config.schema import Config

_lock = threading.RLock()
_by_path: dict[Path, Config] = {}


def _resolve(config_path: Path | None) -> Path:
    return Path(config_path or get_config_path()).expanduser().resolve()


def get_config(*, config_path: Path | None = None, force_reload: bool = False) -> Config:
    """Return the config for a path, loading it on first use or when forced."""
    path = _resolve(config_path)
    with _lock:
        cfg = None if force_reload else _by_path.get(path)
        if cfg is None:
            cfg = _by_path[path] = load_config(path)
        return cfg


def clear_config_cache(*, config_path: Path | None = None) -> None:
    """Drop one cached config, or all of them when no path is given."""
    with _lock:
        if config_path is None:
            _by_path.clear()
        else:
            _by_path.pop(_resolve(config_path), None)

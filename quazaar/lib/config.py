# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Configuration loader for the Quazaar daemon.

Loads a single JSON config file.  Search order:
  1. $QUAZAAR_CONFIG                  (explicit path, e.g. from --config)
  2. /etc/quazaar/config.json         (system install)
  3. config.json                      (CWD — handy for local dev)
  4. ~/.config/quazaar/config.json    (per-user)

The bind address is the one thing normally set from the environment:
QUAZAAR_HOST and QUAZAAR_PORT win over the file.

Usage:
    from quazaar.lib.config import cfg, load_settings

    port      = cfg("server", "port", default=8765)
    apps      = cfg("apps", default={})      # name → argv list | desktop id
    settings  = load_settings()              # validated, env applied
"""

import json
import logging
import os
from dataclasses import dataclass, field

from .errors import ConfigError

log = logging.getLogger(__name__)

_config: dict | None = None

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8765
DEFAULT_QUEUE_SIZE = 100

# Seconds between polls; media moves fastest, bluetooth barely at all
DEFAULT_INTERVALS = {
    "media": 1.0,
    "bluetooth": 5.0,
    "wifi": 3.0,
}


def _search_paths() -> list[str]:
    paths = []
    explicit = os.environ.get("QUAZAAR_CONFIG")
    if explicit:
        paths.append(explicit)
    paths += [
        "/etc/quazaar/config.json",
        "config.json",
        os.path.join(os.path.expanduser("~"), ".config", "quazaar", "config.json"),
    ]
    return paths


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    pollers = config.get("pollers") or {}
    if not isinstance(pollers, dict):
        log.warning("Config %s: 'pollers' must map poller names to seconds — ignored", path)
        pollers = {}
    for name, interval in pollers.items():
        if name not in DEFAULT_INTERVALS:
            log.warning("Config %s: unknown poller '%s' (known: %s)",
                        path, name, ", ".join(DEFAULT_INTERVALS))
        elif interval not in (0, False, None) and not (
                isinstance(interval, (int, float)) and interval > 0):
            log.warning("Config %s: pollers.%s must be a positive number of seconds", path, name)
    apps = config.get("apps") or {}
    if not isinstance(apps, dict):
        log.warning("Config %s: 'apps' must map names to argv lists", path)
        return
    for name, target in apps.items():
        if not _valid_app(target):
            log.warning("Config %s: apps.%s must be an argv list or a desktop id — ignored", path, name)


def _valid_app(target) -> bool:
    """An app target is a desktop-file id or a non-empty argv list."""
    if isinstance(target, str):
        return bool(target.strip())
    return (isinstance(target, list) and bool(target)
            and all(isinstance(a, str) for a in target))


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            log.error("Invalid JSON in %s: %s", path, e)
            continue
        if not isinstance(_config, dict):
            log.error("Config %s: top level must be an object", path)
            _config = None
            continue
        log.info("Config loaded from %s", path)
        _validate(_config, path)
        return _config

    log.warning("No config.json found — using defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("apps")                         → config["apps"]
    cfg("server", "port")               → config["server"]["port"]
    cfg("pollers", "wifi", default=3)   → config["pollers"]["wifi"] or 3
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()


@dataclass
class Settings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    queue_size: int = DEFAULT_QUEUE_SIZE
    static_dir: str | None = None
    heartbeat: float | None = 30.0
    intervals: dict = field(default_factory=lambda: dict(DEFAULT_INTERVALS))
    apps: dict = field(default_factory=dict)
    artwork_cache_size: int = 100
    artwork_max_bytes: int = 500 * 1024


def _as_int(value, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def _as_float(value, name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


def load_settings() -> Settings:
    """Build validated server settings from the config file + environment."""
    settings = Settings()
    settings.host = os.environ.get("QUAZAAR_HOST") or cfg("server", "host", default=DEFAULT_HOST)
    settings.port = _as_int(
        os.environ.get("QUAZAAR_PORT") or cfg("server", "port", default=DEFAULT_PORT),
        "port")
    if not 0 < settings.port < 65536:
        raise ConfigError(f"port out of range: {settings.port}")

    settings.queue_size = _as_int(
        cfg("server", "queue_size", default=DEFAULT_QUEUE_SIZE), "server.queue_size")
    if settings.queue_size < 1:
        raise ConfigError("server.queue_size must be at least 1")

    settings.static_dir = cfg("server", "static_dir")
    if settings.static_dir is not None and not isinstance(settings.static_dir, str):
        raise ConfigError(f"server.static_dir must be a path, got {settings.static_dir!r}")

    heartbeat = cfg("server", "heartbeat", default=30.0)
    settings.heartbeat = _as_float(heartbeat, "server.heartbeat") if heartbeat else None
    if settings.heartbeat is not None and settings.heartbeat <= 0:
        raise ConfigError("server.heartbeat must be positive (0 disables it)")

    for name in DEFAULT_INTERVALS:
        interval = cfg("pollers", name, default=DEFAULT_INTERVALS[name])
        if interval in (0, False, None):
            settings.intervals[name] = None  # disabled
        elif isinstance(interval, (int, float)) and interval > 0:
            settings.intervals[name] = float(interval)

    apps = cfg("apps", default={})
    if isinstance(apps, dict):
        settings.apps = {name: target for name, target in apps.items() if _valid_app(target)}

    settings.artwork_cache_size = _as_int(
        cfg("artwork", "cache_size", default=100), "artwork.cache_size")
    settings.artwork_max_bytes = _as_int(
        cfg("artwork", "max_bytes", default=500 * 1024), "artwork.max_bytes")
    return settings

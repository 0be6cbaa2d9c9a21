"""
Shared configuration loader for the notch audio core.

Loads a single JSON config file.  Search order:
  1. $NOTCHAUDIO_CONFIG                    (explicit override)
  2. ~/.config/notchaudio/config.json      (per-user install)
  3. config.json                           (CWD, handy for local dev)

Every value has a built-in default, so running without any config file is
the normal case.

Usage:
    from notchaudio.lib.config import cfg

    interval = cfg("polling", "native_interval", default=2.0)
    order    = cfg("probes", "order", default=DEFAULT_ORDER)
    server   = cfg("server")  # returns the whole dict
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

_KNOWN_SECTIONS = ("polling", "timeouts", "artwork", "native", "probes", "server", "volume")


def _search_paths() -> list[str]:
    paths = []
    override = os.environ.get("NOTCHAUDIO_CONFIG")
    if override:
        paths.append(override)
    paths.append(os.path.join(os.path.expanduser("~"), ".config", "notchaudio", "config.json"))
    paths.append("config.json")
    return paths


def _validate(config: dict, path: str) -> None:
    """Warn about unknown or suspicious config values."""
    for section in config:
        if section not in _KNOWN_SECTIONS:
            logger.warning("Config %s: unknown section '%s' (ignored)", path, section)
    polling = config.get("polling") or {}
    for key in ("native_interval", "fallback_interval", "volume_interval"):
        val = polling.get(key)
        if val is not None and (not isinstance(val, (int, float)) or val <= 0):
            logger.warning("Config %s: polling.%s must be a positive number, got %r", path, key, val)
    artwork = config.get("artwork") or {}
    size = artwork.get("cache_size")
    if size is not None and (not isinstance(size, int) or size < 1):
        logger.warning("Config %s: artwork.cache_size must be >= 1, got %r", path, size)
    order = (config.get("probes") or {}).get("order")
    if order is not None and not isinstance(order, list):
        logger.warning("Config %s: probes.order must be a list of app names", path)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.debug("No config.json found, using defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("server")                      → config["server"]
    cfg("server", "port")              → config["server"]["port"]
    cfg("artwork", "cache_size", default=30)  → config["artwork"]["cache_size"] or 30
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

"""
Pluggable system volume adapters.

The factory ``create_volume_adapter`` reads config.json and the host
platform and returns the right adapter.

Supported types:
  - ``osascript`` – macOS output volume via Standard Additions (default on macOS)
  - ``none``      – in-memory only (default elsewhere)
"""

import logging
import shutil
import sys

from ..config import cfg
from .base import VolumeAdapter, clamp_volume
from .null import NullVolume
from .osascript import OsascriptVolume

logger = logging.getLogger(__name__)

__all__ = [
    "VolumeAdapter",
    "NullVolume",
    "OsascriptVolume",
    "clamp_volume",
    "create_volume_adapter",
]


def create_volume_adapter() -> VolumeAdapter:
    """Create the right volume adapter based on config.json.

    Reads from config.json "volume" section:
      type – "osascript" or "none".  If omitted, "osascript" when running on
             macOS with osascript on PATH, otherwise "none".
    """
    vol_type = cfg("volume", "type")
    if vol_type is None:
        if sys.platform == "darwin" and shutil.which("osascript"):
            vol_type = "osascript"
        else:
            vol_type = "none"
    vol_type = str(vol_type).lower()

    if vol_type == "osascript":
        timeout = float(cfg("timeouts", "script", default=2.0))
        logger.info("Volume adapter: osascript output volume")
        return OsascriptVolume(timeout=timeout)
    if vol_type != "none":
        logger.warning("Unknown volume.type '%s', using in-memory volume", vol_type)
    logger.info("Volume adapter: in-memory (no system mixer)")
    return NullVolume()

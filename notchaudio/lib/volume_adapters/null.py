"""
In-memory volume adapter for hosts without a scriptable mixer (and tests).
"""

import logging

from .base import VolumeAdapter, clamp_volume

logger = logging.getLogger(__name__)


class NullVolume(VolumeAdapter):
    """Keeps the last requested volume; touches no hardware."""

    def __init__(self, initial: float = 0.5):
        self._volume = clamp_volume(initial)
        self.set_calls = 0

    async def set_volume(self, volume: float) -> None:
        self._volume = clamp_volume(volume)
        self.set_calls += 1
        logger.debug("-> Null volume: %.0f%%", self._volume * 100)

    async def get_volume(self) -> float:
        return self._volume

"""
macOS output volume adapter — uses ``set volume output volume`` via osascript.
"""

import asyncio
import logging

from ..errors import ProbeError
from ..osascript import run_script
from .base import VolumeAdapter, clamp_volume

logger = logging.getLogger(__name__)

GET_SCRIPT = "output volume of (get volume settings)"


class OsascriptVolume(VolumeAdapter):
    """System output volume through Standard Additions."""

    def __init__(self, debounce_ms: int = 50, timeout: float = 2.0):
        self._timeout = timeout
        # Debounce state
        self._pending_volume: float | None = None
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._debounce_ms = debounce_ms

    async def set_volume(self, volume: float) -> None:
        self._pending_volume = clamp_volume(volume)
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(
            self._debounce_ms / 1000, lambda: asyncio.ensure_future(self._flush())
        )

    async def get_volume(self) -> float:
        try:
            out = await run_script(GET_SCRIPT, timeout=self._timeout)
            return clamp_volume(int(out) / 100)
        except (ProbeError, ValueError) as e:
            logger.debug("Could not read system volume: %s", e)
            return self._pending_volume if self._pending_volume is not None else 0.5

    async def close(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        await self._flush()

    async def _flush(self):
        """Send the most recent pending volume to the system."""
        vol = self._pending_volume
        if vol is None:
            return
        self._pending_volume = None
        self._debounce_handle = None
        try:
            await run_script(f"set volume output volume {round(vol * 100)}",
                             timeout=self._timeout)
            logger.info("-> System volume: %.0f%%", vol * 100)
        except ProbeError as e:
            logger.warning("Could not set system volume: %s", e)

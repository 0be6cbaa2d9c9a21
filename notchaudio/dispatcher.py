"""
Command dispatcher — transport and volume commands from the UI.

Transport commands go to the native provider when it is available (it
forwards to whichever app owns now-playing focus), otherwise to the scripted
probe that produced the current track.  With no current track there is
nobody to talk to and the command is dropped.

The owning app updates its state asynchronously, so every transport command
schedules one follow-up reconciliation after a settle delay: short for
play/pause, longer for next/previous since track metadata takes longer to
change than a play-state flag.  A burst of commands still yields a single
follow-up.

Volume is one system-wide scalar in [0, 1] and does not depend on the audio
source.
"""

import asyncio
import logging
from typing import Callable

from .aggregator import AudioAggregator
from .lib.processes import running_apps as list_running_apps
from .lib.volume_adapters import NullVolume, VolumeAdapter, clamp_volume
from .probes.base import Command

logger = logging.getLogger(__name__)

PLAY_PAUSE_SETTLE = 0.3
SKIP_SETTLE = 0.8

VolumeListener = Callable[[float], None]


class CommandDispatcher:
    """Routes commands to the backend that owns the published track."""

    def __init__(self, aggregator: AudioAggregator, volume: VolumeAdapter | None = None, *,
                 running_apps: Callable[[], set[str]] = list_running_apps,
                 play_pause_settle: float = PLAY_PAUSE_SETTLE,
                 skip_settle: float = SKIP_SETTLE):
        self.aggregator = aggregator
        self.volume = volume or NullVolume()
        self._running_apps = running_apps
        self.play_pause_settle = play_pause_settle
        self.skip_settle = skip_settle
        self.system_volume: float = 0.5
        self._volume_listeners: list[VolumeListener] = []

    # ── Transport ──

    async def toggle_play_pause(self) -> bool:
        return await self._transport(Command.PLAY_PAUSE, self.play_pause_settle)

    async def next_track(self) -> bool:
        return await self._transport(Command.NEXT, self.skip_settle)

    async def previous_track(self) -> bool:
        return await self._transport(Command.PREVIOUS, self.skip_settle)

    async def _transport(self, cmd: Command, settle: float) -> bool:
        sent = await self._send(cmd)
        if sent:
            self.aggregator.schedule_reconcile(settle, f"after_{cmd.value}")
        return sent

    async def _send(self, cmd: Command) -> bool:
        native = self.aggregator.native
        if native.is_available():
            return await native.send_command(cmd)

        track = self.aggregator.current_track
        if track is None:
            logger.info("No current track, ignoring %s", cmd.value)
            return False
        probe = self.aggregator.probe_for(track.source)
        if probe is None:
            logger.info("No probe owns %s, ignoring %s", track.source, cmd.value)
            return False
        running = await asyncio.to_thread(self._running_apps)
        return await probe.send_command(cmd, running)

    # ── Volume ──

    def add_volume_listener(self, callback: VolumeListener) -> None:
        if callback not in self._volume_listeners:
            self._volume_listeners.append(callback)

    def _set_observed_volume(self, volume: float) -> None:
        if volume == self.system_volume:
            return
        self.system_volume = volume
        for callback in list(self._volume_listeners):
            try:
                callback(volume)
            except Exception as e:
                logger.error("Volume listener error: %s", e)

    async def set_volume(self, volume: float) -> float:
        clamped = clamp_volume(volume)
        self._set_observed_volume(clamped)
        await self.volume.set_volume(clamped)
        return clamped

    async def refresh_volume(self) -> float:
        """Re-read the system volume (it can change outside this process)."""
        self._set_observed_volume(clamp_volume(await self.volume.get_volume()))
        return self.system_volume

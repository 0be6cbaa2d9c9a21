# notchaudio
# Copyright (C) 2026 The notchaudio authors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
AudioAggregator — the one authoritative "what is playing" state.

Merges the native now-playing provider and the scripted probes into a single
published ``AudioSnapshot``.  States:

    IDLE             nothing reconciled yet
    NATIVE_ACTIVE    the native provider reported a track
    FALLBACK_ACTIVE  native was silent (or unavailable); a probe found a track
    NO_SOURCE        nobody reported anything; current_track cleared

A reconciliation pass asks the native provider first.  If it has a fresh
track, that track wins and no probe runs.  Otherwise probes are asked one at
a time in priority order and the first answer is published, paused or not.

Passes are serialised by a lock and published as a single immutable snapshot,
so consumers only ever see the last complete pass and never a track without
its play state.

Triggers:
    native change notification   (best-effort, coalesced)
    native poll timer            (cheap, default 2 s; asks native only)
    fallback poll timer          (spawns osascript, default 3 s, skipped while native is active)
    schedule_reconcile(delay)    (post-command resync from the dispatcher)

Stale native reports: a paused native track whose identity and play state
have not changed for ``native_stale_after`` seconds is treated as expired
(the owning app may have quit without a final "stopped"), which lets the
probes take over.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from .lib.artwork import ArtworkCache
from .lib.errors import AutomationTimeout, ErrorReporter
from .lib.processes import running_apps as list_running_apps
from .lib.track import TrackObservation, TrackSource
from .native import NATIVE_APP_ID, NativeMediaInfoProvider, NullNativeProvider
from .probes.base import SourceProbe

log = logging.getLogger(__name__)

NATIVE_POLL_INTERVAL = 2.0
FALLBACK_POLL_INTERVAL = 3.0
NATIVE_QUERY_TIMEOUT = 3.0
PROBE_QUERY_TIMEOUT = 8.0
NATIVE_STALE_AFTER = 60.0


class AudioState(str, Enum):
    IDLE = "idle"
    NATIVE_ACTIVE = "native_active"
    FALLBACK_ACTIVE = "fallback_active"
    NO_SOURCE = "no_source"


@dataclass(frozen=True)
class AudioSnapshot:
    """One published reconciliation result."""

    current_track: TrackObservation | None = None
    is_playing: bool = False
    state: AudioState = AudioState.IDLE
    track_changed_at: float = 0.0
    updated_at: float = 0.0

    def __post_init__(self):
        if self.current_track is None and self.is_playing:
            raise ValueError("is_playing requires a current track")

    def to_dict(self) -> dict:
        track = self.current_track
        return {
            "track": track.to_dict() if track else None,
            "state": "playing" if self.is_playing else ("paused" if track else "stopped"),
            "source_state": self.state.value,
            "track_changed_at": self.track_changed_at,
        }


Listener = Callable[[AudioSnapshot, bool], None]


def _visibly_different(old: AudioSnapshot, new: AudioSnapshot) -> bool:
    if (old.is_playing, old.state) != (new.is_playing, new.state):
        return True
    a, b = old.current_track, new.current_track
    if a is None or b is None:
        return a is not b
    return (a.fingerprint != b.fingerprint
            or a.artwork != b.artwork
            or (a.elapsed, a.duration, a.url, a.source) != (b.elapsed, b.duration, b.url, b.source))


class AudioAggregator:
    """Owns the published audio state.  Construct once per process."""

    def __init__(self, native: NativeMediaInfoProvider | None = None,
                 probes: list[SourceProbe] | None = None, *,
                 artwork_cache: ArtworkCache | None = None,
                 reporter: ErrorReporter | None = None,
                 running_apps: Callable[[], set[str]] = list_running_apps,
                 native_interval: float = NATIVE_POLL_INTERVAL,
                 fallback_interval: float = FALLBACK_POLL_INTERVAL,
                 native_timeout: float = NATIVE_QUERY_TIMEOUT,
                 probe_timeout: float = PROBE_QUERY_TIMEOUT,
                 native_stale_after: float = NATIVE_STALE_AFTER,
                 clock: Callable[[], float] = time.monotonic):
        self.native = native or NullNativeProvider()
        self.probes = list(probes or [])
        self.artwork_cache = artwork_cache or ArtworkCache()
        self.reporter = reporter or ErrorReporter()
        self._running_apps = running_apps
        self.native_interval = native_interval
        self.fallback_interval = fallback_interval
        self.native_timeout = native_timeout
        self.probe_timeout = probe_timeout
        self.native_stale_after = native_stale_after
        self._clock = clock

        self._snapshot = AudioSnapshot()
        self._lock = asyncio.Lock()
        self._listeners: list[Listener] = []
        self._tasks: set[asyncio.Task] = set()
        self._poll_tasks: list[asyncio.Task] = []
        self._resync_handle: asyncio.TimerHandle | None = None
        self._change_pending = False
        self.running = False
        self.cycles = 0
        self.probe_passes_skipped = 0

        # Native staleness bookkeeping
        self._native_key: tuple[str, bool] | None = None
        self._native_since = 0.0

    # ── Published state ──

    @property
    def snapshot(self) -> AudioSnapshot:
        return self._snapshot

    @property
    def current_track(self) -> TrackObservation | None:
        return self._snapshot.current_track

    @property
    def is_playing(self) -> bool:
        return self._snapshot.is_playing

    def add_listener(self, callback: Listener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify_listeners(self, snapshot: AudioSnapshot, track_changed: bool) -> None:
        for callback in list(self._listeners):
            try:
                callback(snapshot, track_changed)
            except Exception as e:
                log.error("Listener error: %s", e)

    def probe_for(self, source: TrackSource | None) -> SourceProbe | None:
        """The scripted probe that owns *source*, if any."""
        if source is None:
            return None
        for probe in self.probes:
            if probe.app_id == source.app_id:
                return probe
        return None

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start the provider, run a first pass, then start both poll timers."""
        self.running = True
        await self.native.start()
        self.native.register_for_change_notifications(self._on_native_change)
        if self.native.is_available():
            log.info("Using native now-playing + scripted fallback (%d probes)", len(self.probes))
        else:
            log.info("Native now-playing unavailable, using scripted probes only")
        await self.reconcile("startup")
        self._poll_tasks = [
            asyncio.create_task(self._native_poll_loop()),
            asyncio.create_task(self._fallback_poll_loop()),
        ]

    async def stop(self) -> None:
        self.running = False
        if self._resync_handle:
            self._resync_handle.cancel()
            self._resync_handle = None
        for task in self._poll_tasks + list(self._tasks):
            task.cancel()
        for task in self._poll_tasks + list(self._tasks):
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass
        self._poll_tasks = []
        self._tasks.clear()
        await self.native.stop()

    # ── Triggers ──

    async def _native_poll_loop(self):
        while self.running:
            await asyncio.sleep(self.native_interval)
            if self.native.is_available():
                await self.reconcile("native_poll", fallback=False)

    async def _fallback_poll_loop(self):
        while self.running:
            await asyncio.sleep(self.fallback_interval)
            if self._snapshot.state is AudioState.NATIVE_ACTIVE:
                continue  # the native poll covers this
            await self.reconcile("fallback_poll")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _on_native_change(self) -> None:
        if self._change_pending:
            return
        self._change_pending = True
        self._spawn(self._reconcile_from_change())

    async def _reconcile_from_change(self):
        async with self._lock:
            self._change_pending = False
            await self._reconcile_locked("native_change", fallback=False)

    def schedule_reconcile(self, delay: float, reason: str = "resync") -> None:
        """Run exactly one pass after *delay*; replaces a pending one."""
        if self._resync_handle is not None:
            self._resync_handle.cancel()
        loop = asyncio.get_running_loop()
        self._resync_handle = loop.call_later(delay, self._fire_resync, reason)

    def _fire_resync(self, reason: str) -> None:
        self._resync_handle = None
        self._spawn(self.reconcile(reason))

    @property
    def resync_pending(self) -> bool:
        return self._resync_handle is not None

    # ── Reconciliation ──

    async def reconcile(self, reason: str = "manual", *, fallback: bool = True) -> AudioSnapshot:
        """Run one pass and publish its result.

        With ``fallback=False`` (native poll and change notifications) the
        scripted probes only run when native just stopped reporting; while
        native stays silent the fallback timer alone keeps the probe result
        current.
        """
        async with self._lock:
            return await self._reconcile_locked(reason, fallback)

    async def _reconcile_locked(self, reason: str, fallback: bool = True) -> AudioSnapshot:
        self.cycles += 1
        try:
            result = await self._compute(fallback)
        except Exception:
            log.exception("Reconciliation (%s) failed, keeping previous state", reason)
            return self._snapshot
        if result is None:
            return self._snapshot
        track, playing, state = result
        return self._publish(track, playing, state, reason)

    async def _compute(self, fallback: bool = True):
        """``(track, playing, state)``, or None when the pass leaves the published state alone."""
        if self.native.is_available():
            track, playing = await self._query_native()
            if track is not None and not self._native_expired(track, playing):
                return track, playing, AudioState.NATIVE_ACTIVE
            if not fallback and self._snapshot.state is not AudioState.NATIVE_ACTIVE:
                self.probe_passes_skipped += 1
                return None

        running = await asyncio.to_thread(self._running_apps)
        for probe in self.probes:
            track = await self._query_probe(probe, running)
            if track is not None:
                return track, await probe.is_playing(), AudioState.FALLBACK_ACTIVE
        return None, False, AudioState.NO_SOURCE

    async def _query_native(self) -> tuple[TrackObservation | None, bool]:
        try:
            track = await asyncio.wait_for(self.native.current_info(), self.native_timeout)
            playing = await self.native.is_playing()
        except asyncio.TimeoutError:
            self.reporter.report(AutomationTimeout(NATIVE_APP_ID, "native query timed out"))
            return None, False
        return track, (playing if track is not None else False)

    async def _query_probe(self, probe: SourceProbe, running: set[str]) -> TrackObservation | None:
        try:
            return await asyncio.wait_for(probe.probe(running), self.probe_timeout)
        except asyncio.TimeoutError:
            self.reporter.report(AutomationTimeout(probe.app_id, "probe timed out"))
            return None

    def _native_expired(self, track: TrackObservation, playing: bool) -> bool:
        now = self._clock()
        key = (track.fingerprint, playing)
        if key != self._native_key:
            self._native_key = key
            self._native_since = now
            return False
        if playing:
            return False
        expired = now - self._native_since > self.native_stale_after
        if expired:
            log.debug("Native report for %r is stale, allowing fallback", track.title)
        return expired

    def _publish(self, track: TrackObservation | None, playing: bool,
                 state: AudioState, reason: str) -> AudioSnapshot:
        prev = self._snapshot
        old = prev.current_track
        now = self._clock()

        if track is None:
            playing = False
            changed = old is not None
        else:
            changed = old is None or old.fingerprint != track.fingerprint
            if not changed and track.artwork is None and old.artwork is not None:
                track = replace(track, artwork=old.artwork)

        snapshot = AudioSnapshot(
            current_track=track,
            is_playing=playing,
            state=state,
            track_changed_at=now if changed else prev.track_changed_at,
            updated_at=now,
        )
        self._snapshot = snapshot

        if changed:
            if track:
                log.info("Track changed (%s): %s - %s [%s]", reason,
                         track.display_artist, track.title, track.source)
            else:
                log.info("No audio detected (%s)", reason)
        if changed or _visibly_different(prev, snapshot):
            self._notify_listeners(snapshot, changed)
        return snapshot

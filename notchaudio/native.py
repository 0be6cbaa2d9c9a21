"""
Native now-playing provider.

The system keeps one "Now Playing" record for whichever app owns media
focus (the same record Control Center shows).  Reading it covers every app
uniformly, including ones no scripted probe knows about, so the aggregator
always asks it first.

On macOS the record is reached through the ``media-control`` helper (a
MediaRemote adapter):

  media-control get                  — one JSON object, or null
  media-control stream               — JSON lines {"type": "data", "diff": bool, "payload": {...}}
  media-control toggle-play-pause | next-track | previous-track

Availability is decided once, in ``start()``.  If the helper is missing or
its first ``get`` fails, the provider stays unavailable for the life of the
process and the aggregator uses scripted probes only.  The change stream is
best-effort: it may die silently, which is why the aggregator keeps polling.

``NullNativeProvider`` is the always-unavailable stand-in for hosts without
the facility (and for tests).
"""

import asyncio
import base64
import binascii
import json
import logging
import shutil
import time
from typing import Callable

from .lib.artwork import ArtworkCache
from .lib.errors import ErrorReporter, MalformedResponse, NativeProviderLoadFailure, ProbeError
from .lib.osascript import reap, run_process
from .lib.track import SourceKind, TrackObservation, TrackSource, parse_float
from .probes.base import Command

logger = logging.getLogger(__name__)

NATIVE_APP_ID = "native"
STREAM_RESTART_MIN = 1.0
STREAM_RESTART_MAX = 30.0
STREAM_LINE_LIMIT = 16 * 1024 * 1024
STREAM_FRESH_FOR = 1.0

_COMMAND_ARGS = {
    Command.PLAY_PAUSE: "toggle-play-pause",
    Command.NEXT: "next-track",
    Command.PREVIOUS: "previous-track",
}

ChangeHandler = Callable[[], None]


class NativeMediaInfoProvider:
    """Interface for the system-wide now-playing facility."""

    def __init__(self):
        self._handlers: list[ChangeHandler] = []
        self._playing = False

    def is_available(self) -> bool:
        return False

    async def start(self) -> None:
        """Resolve availability (once) and start change notifications."""

    async def stop(self) -> None:
        """Stop change notifications."""

    async def current_info(self) -> TrackObservation | None:
        return None

    async def is_playing(self) -> bool:
        """Play state that came with the last ``current_info`` answer."""
        return self._playing

    def register_for_change_notifications(self, handler: ChangeHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    async def send_command(self, cmd: Command) -> bool:
        return False

    def _notify_change(self) -> None:
        for handler in list(self._handlers):
            try:
                handler()
            except Exception as e:
                logger.error("Change handler error: %s", e)


class NullNativeProvider(NativeMediaInfoProvider):
    """Always unavailable."""


def observation_from_payload(payload: dict | None, cache: ArtworkCache | None = None):
    """Build ``(TrackObservation | None, playing)`` from a media-control payload."""
    if not payload:
        return None, False
    title = (payload.get("title") or "").strip()
    playing = bool(payload.get("playing"))
    if not title:
        return None, False

    artist = payload.get("artist") or None
    album = payload.get("album") or None
    track = TrackObservation(
        title=title,
        artist=artist,
        album=album,
        source=TrackSource(SourceKind.NATIVE, payload.get("bundleIdentifier")),
        duration=parse_float(payload.get("duration")),
        elapsed=parse_float(payload.get("elapsedTime")),
    )

    artwork = None
    if cache is not None:
        artwork = cache.get(track.fingerprint)
    if artwork is None and payload.get("artworkData"):
        try:
            artwork = base64.b64decode(payload["artworkData"], validate=True)
        except (binascii.Error, ValueError):
            logger.debug("Undecodable artwork for %s", title)
            artwork = None
        if artwork and cache is not None:
            cache.put(track.fingerprint, artwork)
    return track.with_artwork(artwork), playing


class MediaControlProvider(NativeMediaInfoProvider):
    """Now-playing info through the ``media-control`` helper.

    While the change stream is delivering, its merged payload answers
    ``current_info`` directly, so a notification-driven pass costs no
    extra ``get``.  Once the stream has been quiet for ``stream_fresh_for``
    seconds (or has died) every query goes back to ``media-control get``.
    """

    def __init__(self, command: str = "media-control", *, timeout: float = 1.5,
                 artwork_cache: ArtworkCache | None = None,
                 reporter: ErrorReporter | None = None,
                 stream_fresh_for: float = STREAM_FRESH_FOR,
                 restart_delay: float = STREAM_RESTART_MIN,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__()
        self.command = command
        self.timeout = timeout
        self.artwork_cache = artwork_cache or ArtworkCache()
        self.reporter = reporter or ErrorReporter()
        self.stream_fresh_for = stream_fresh_for
        self.restart_delay = restart_delay
        self._clock = clock
        self._available = False
        self._resolved = False
        self._stream_task: asyncio.Task | None = None
        self._stream_proc: asyncio.subprocess.Process | None = None
        self._stream_state: dict = {}
        self._stream_updated_at: float | None = None
        self.stream_restarts = 0
        self.running = False

    def is_available(self) -> bool:
        return self._available

    # ── Lifecycle ──

    async def start(self) -> None:
        if not self._resolved:
            self._resolved = True
            self._available = await self._resolve()
        if self._available and self._stream_task is None:
            self.running = True
            self._stream_task = asyncio.create_task(self._stream_loop())

    async def stop(self) -> None:
        self.running = False
        if self._stream_proc and self._stream_proc.returncode is None:
            try:
                self._stream_proc.kill()
            except ProcessLookupError:
                pass
        if self._stream_task:
            self._stream_task.cancel()
            try:
                await self._stream_task
            except asyncio.CancelledError:
                pass
            self._stream_task = None

    async def _resolve(self) -> bool:
        path = shutil.which(self.command)
        if not path:
            self.reporter.report(NativeProviderLoadFailure(
                NATIVE_APP_ID, f"{self.command} not found on PATH"))
            return False
        self.command = path
        try:
            await self._get()
        except ProbeError as e:
            self.reporter.report(NativeProviderLoadFailure(NATIVE_APP_ID, str(e)))
            return False
        logger.info("Native now-playing provider: %s", path)
        return True

    # ── Queries ──

    async def _get(self) -> dict | None:
        rc, stdout, stderr = await run_process(
            self.command, "get", app_id=NATIVE_APP_ID, timeout=self.timeout)
        if rc != 0:
            raise MalformedResponse(NATIVE_APP_ID, stderr.strip() or f"exit status {rc}")
        text = stdout.strip()
        if not text or text == "null":
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedResponse(NATIVE_APP_ID, f"invalid JSON: {e}")
        if data is not None and not isinstance(data, dict):
            raise MalformedResponse(NATIVE_APP_ID, "expected a JSON object")
        return data

    def stream_is_fresh(self) -> bool:
        return (self._stream_updated_at is not None
                and self._clock() - self._stream_updated_at <= self.stream_fresh_for)

    async def current_info(self) -> TrackObservation | None:
        if not self._available:
            return None
        if self.stream_is_fresh():
            track, self._playing = observation_from_payload(self._stream_state, self.artwork_cache)
            return track
        try:
            payload = await self._get()
        except ProbeError as e:
            self.reporter.report(e)
            self._playing = False
            return None
        track, self._playing = observation_from_payload(payload, self.artwork_cache)
        return track

    async def send_command(self, cmd: Command) -> bool:
        if not self._available:
            return False
        try:
            rc, _, stderr = await run_process(
                self.command, _COMMAND_ARGS[cmd], app_id=NATIVE_APP_ID, timeout=self.timeout)
        except ProbeError as e:
            self.reporter.report(e)
            return False
        if rc != 0:
            logger.warning("Native %s failed: %s", cmd.value, stderr.strip())
            return False
        logger.info("%s -> native", cmd.value)
        return True

    # ── Change notifications ──

    def _apply_stream_line(self, line: str) -> bool:
        """Merge one stream line into the stream state.  True if it was data."""
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON stream line: %r", line[:80])
            return False
        if not isinstance(msg, dict) or msg.get("type") != "data":
            return False
        payload = msg.get("payload") or {}
        if msg.get("diff"):
            self._stream_state.update(payload)
            self._stream_state = {k: v for k, v in self._stream_state.items() if v is not None}
        else:
            self._stream_state = dict(payload)
        self._stream_updated_at = self._clock()
        return True

    async def _stream_loop(self):
        """Run ``media-control stream`` and fire change handlers per update."""
        backoff = self.restart_delay
        while self.running:
            proc = None
            try:
                # Artwork travels base64 inside a single line
                proc = self._stream_proc = await asyncio.create_subprocess_exec(
                    self.command, "stream",
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.DEVNULL,
                    limit=STREAM_LINE_LIMIT,
                )
                logger.info("Now-playing change stream started")
                async for raw in proc.stdout:
                    line = raw.decode(errors="replace").strip()
                    if line and self._apply_stream_line(line):
                        backoff = self.restart_delay
                        self._notify_change()
                await proc.wait()
                logger.info("Change stream exited (rc=%s)", proc.returncode)
            except Exception as e:
                logger.warning("Change stream error: %s", e)
            finally:
                self._stream_updated_at = None
                if proc is not None and proc.returncode is None:
                    await reap(proc)
            if not self.running:
                break
            self.stream_restarts += 1
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, STREAM_RESTART_MAX)

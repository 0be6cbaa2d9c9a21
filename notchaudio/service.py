# notchaudio
# Copyright (C) 2026 The notchaudio authors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
NowPlayingService — the notch UI's view of the audio core.

Owns the single AudioAggregator and CommandDispatcher for the process and
exposes them over a local HTTP + WebSocket API:

  GET  /ws                 — push feed: media_update, volume, permission_required
  POST /player/toggle      — play/pause
  POST /player/next        — next track
  POST /player/prev        — previous track
  POST /player/volume      — {"volume": 0.0-1.0}
  GET  /player/state       — current snapshot
  GET  /player/status      — snapshot plus diagnostics

Built-in hooks:
    on_snapshot()          — aggregator listener, broadcasts media updates
    on_permission_needed() — one-shot prompt per app denied automation
"""

import asyncio
import logging
import signal

import aiohttp
from aiohttp import web

from .aggregator import (
    FALLBACK_POLL_INTERVAL,
    NATIVE_POLL_INTERVAL,
    NATIVE_STALE_AFTER,
    AudioAggregator,
    AudioSnapshot,
)
from .dispatcher import CommandDispatcher
from .lib.artwork import ARTWORK_CACHE_SIZE, ArtworkCache, encode_artwork
from .lib.config import cfg
from .lib.errors import ErrorReporter
from .lib.volume_adapters import create_volume_adapter
from .native import MediaControlProvider, NativeMediaInfoProvider, NullNativeProvider
from .probes import build_probes

log = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8787
VOLUME_POLL_INTERVAL = 1.0


class NowPlayingService:

    def __init__(self, aggregator: AudioAggregator, dispatcher: CommandDispatcher, *,
                 host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                 volume_interval: float = VOLUME_POLL_INTERVAL):
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.host = host
        self.port = port
        self.volume_interval = volume_interval
        self.running: bool = False
        self._ws_clients: set[web.WebSocketResponse] = set()
        self._runner: web.AppRunner | None = None
        self._http_session: aiohttp.ClientSession | None = None
        self._volume_task: asyncio.Task | None = None
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._publisher: asyncio.Task | None = None
        self._cached_media_data: dict | None = None
        self._artwork_key: str | None = None
        self._artwork_uri: dict | None = None

        aggregator.add_listener(self.on_snapshot)
        aggregator.reporter.add_permission_handler(self.on_permission_needed)
        dispatcher.add_volume_listener(self.on_volume)

    @classmethod
    def from_config(cls) -> "NowPlayingService":
        """Wire the core from config.json (every value has a default)."""
        cache = ArtworkCache(max_size=int(cfg("artwork", "cache_size", default=ARTWORK_CACHE_SIZE)))
        reporter = ErrorReporter()
        script_timeout = float(cfg("timeouts", "script", default=2.0))

        native: NativeMediaInfoProvider
        if cfg("native", "enabled", default=True):
            native = MediaControlProvider(
                cfg("native", "command", default="media-control"),
                timeout=float(cfg("timeouts", "native", default=1.5)),
                artwork_cache=cache, reporter=reporter)
        else:
            native = NullNativeProvider()

        probes = build_probes(cfg("probes", "order"), reporter=reporter,
                              artwork_cache=cache, timeout=script_timeout)
        aggregator = AudioAggregator(
            native, probes,
            artwork_cache=cache, reporter=reporter,
            native_interval=float(cfg("polling", "native_interval", default=NATIVE_POLL_INTERVAL)),
            fallback_interval=float(cfg("polling", "fallback_interval", default=FALLBACK_POLL_INTERVAL)),
            native_stale_after=float(cfg("native", "stale_after", default=NATIVE_STALE_AFTER)),
        )
        dispatcher = CommandDispatcher(aggregator, create_volume_adapter())
        return cls(
            aggregator, dispatcher,
            host=cfg("server", "host", default=DEFAULT_HOST),
            port=int(cfg("server", "port", default=DEFAULT_PORT)),
            volume_interval=float(cfg("polling", "volume_interval", default=VOLUME_POLL_INTERVAL)),
        )

    # ── Lifecycle ──

    def build_app(self) -> web.Application:
        app = web.Application()

        # WebSocket endpoint for UI push
        app.router.add_get("/ws", self._handle_ws)

        # Player command endpoints
        app.router.add_post("/player/toggle", self._handle_toggle)
        app.router.add_post("/player/next", self._handle_next)
        app.router.add_post("/player/prev", self._handle_prev)
        app.router.add_post("/player/volume", self._handle_volume)
        app.router.add_get("/player/state", self._handle_state)
        app.router.add_get("/player/status", self._handle_status)
        return app

    async def start(self):
        """Start the HTTP server, then the aggregator and volume polling."""
        self.running = True
        self._http_session = aiohttp.ClientSession()
        for probe in self.aggregator.probes:
            probe.http_session = self._http_session

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("Now playing: HTTP + WebSocket on %s:%d", self.host, self.port)

        await self.dispatcher.refresh_volume()
        await self.aggregator.start()
        self._volume_task = asyncio.create_task(self._volume_loop())

    async def run(self):
        """Convenience entry-point: start + wait for signal + stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Clean up resources."""
        self.running = False
        await self.aggregator.stop()

        if self._publisher:
            self._publisher.cancel()
            try:
                await self._publisher
            except (asyncio.CancelledError, Exception):
                pass
            self._publisher = None

        if self._volume_task:
            self._volume_task.cancel()
            try:
                await self._volume_task
            except (asyncio.CancelledError, Exception):
                pass
            self._volume_task = None
        await self.dispatcher.volume.close()

        if self._http_session:
            await self._http_session.close()
            self._http_session = None

        # Close all WebSocket connections
        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _volume_loop(self):
        while self.running:
            await asyncio.sleep(self.volume_interval)
            try:
                await self.dispatcher.refresh_volume()
            except Exception as e:
                log.debug("Volume poll failed: %s", e)

    # ── Listeners (called synchronously by the core) ──

    def _enqueue(self, publish, *args):
        """Queue an outgoing message; one task sends them in arrival order."""
        self._outbox.put_nowait((publish, args))
        if self._publisher is None or self._publisher.done():
            self._publisher = asyncio.get_running_loop().create_task(self._publish_loop())

    async def _publish_loop(self):
        while True:
            publish, args = await self._outbox.get()
            try:
                await publish(*args)
            except Exception as e:
                log.error("Publish failed: %s", e)
            finally:
                self._outbox.task_done()

    async def drain(self):
        """Wait until every queued message has been sent."""
        await self._outbox.join()

    def on_snapshot(self, snapshot: AudioSnapshot, track_changed: bool):
        reason = "track_change" if track_changed else "update"
        self._enqueue(self._publish_snapshot, snapshot, reason)

    def on_volume(self, volume: float):
        self._enqueue(self.broadcast, {"type": "volume", "data": {"volume": volume}})

    def on_permission_needed(self, app_id: str):
        log.warning("Automation permission needed for %s", app_id)
        self._enqueue(self.broadcast, {
            "type": "permission_required",
            "data": {
                "app": app_id,
                "message": f"Allow control of {app_id} in System Settings > "
                           "Privacy & Security > Automation",
            },
        })

    # ── Media payloads ──

    async def media_data(self, snapshot: AudioSnapshot) -> dict:
        data = snapshot.to_dict()
        data["volume"] = self.dispatcher.system_volume
        track = snapshot.current_track
        artwork = None
        if track is not None and track.artwork:
            if self._artwork_key != track.fingerprint:
                self._artwork_uri = await encode_artwork(track.artwork)
                self._artwork_key = track.fingerprint
            artwork = self._artwork_uri
        data["artwork"] = f"data:image/jpeg;base64,{artwork['base64']}" if artwork else None
        data["artwork_size"] = artwork["size"] if artwork else None
        return data

    async def _publish_snapshot(self, snapshot: AudioSnapshot, reason: str):
        media = await self.media_data(snapshot)
        self._cached_media_data = media
        await self.broadcast({"type": "media_update", "reason": reason, "data": media})

    # ── WebSocket broadcasting ──

    async def broadcast(self, message: dict):
        """Push a message to all connected WebSocket clients."""
        if not self._ws_clients:
            return
        disconnected = set()
        for ws in self._ws_clients:
            try:
                await ws.send_json(message)
            except Exception:
                disconnected.add(ws)
        self._ws_clients -= disconnected
        log.debug("Broadcast %s to %d clients", message.get("type"), len(self._ws_clients))

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self._ws_clients.add(ws)
        log.info("WebSocket client connected (%d total)", len(self._ws_clients))

        try:
            media = self._cached_media_data or await self.media_data(self.aggregator.snapshot)
            await ws.send_json({"type": "media_update", "reason": "client_connect", "data": media})

            # Push-only feed; client messages are ignored
            async for msg in ws:
                pass
        finally:
            self._ws_clients.discard(ws)
            log.info("WebSocket client disconnected (%d remaining)", len(self._ws_clients))

        return ws

    # ── HTTP route handlers ──

    def _cors_headers(self):
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    def _command_response(self, ok: bool) -> web.Response:
        return web.json_response(
            {"status": "ok" if ok else "error"},
            headers=self._cors_headers())

    async def _handle_toggle(self, request: web.Request) -> web.Response:
        return self._command_response(await self.dispatcher.toggle_play_pause())

    async def _handle_next(self, request: web.Request) -> web.Response:
        return self._command_response(await self.dispatcher.next_track())

    async def _handle_prev(self, request: web.Request) -> web.Response:
        return self._command_response(await self.dispatcher.previous_track())

    async def _handle_volume(self, request: web.Request) -> web.Response:
        try:
            data = await request.json()
            volume = float(data["volume"])
        except (ValueError, KeyError, TypeError) as e:
            return web.json_response(
                {"status": "error", "message": f"invalid volume: {e}"},
                status=400, headers=self._cors_headers())
        applied = await self.dispatcher.set_volume(volume)
        return web.json_response(
            {"status": "ok", "volume": applied}, headers=self._cors_headers())

    async def _handle_state(self, request: web.Request) -> web.Response:
        data = self.aggregator.snapshot.to_dict()
        data["volume"] = self.dispatcher.system_volume
        return web.json_response(data, headers=self._cors_headers())

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.get_status(), headers=self._cors_headers())

    def get_status(self) -> dict:
        agg = self.aggregator
        return {
            **agg.snapshot.to_dict(),
            "volume": self.dispatcher.system_volume,
            "native_available": agg.native.is_available(),
            "probes": [p.app_id for p in agg.probes],
            "cycles": agg.cycles,
            "errors": dict(agg.reporter.counts),
            "artwork_cache_size": len(agg.artwork_cache),
            "ws_clients": len(self._ws_clients),
        }

# notchaudio
# Copyright (C) 2026 The notchaudio authors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
SourceProbe — shared plumbing for scripted now-playing probes.

A probe watches ONE application family (a media player or a browser) and
answers "what is it playing?" through that app's automation surface.

Subclass contract:

    class MyProbe(SourceProbe):
        kind = ProbeKind.NATIVE_APP

        async def _query(self) -> TrackObservation | None: ...
        async def _command(self, cmd: Command) -> bool: ...

Built-in (no override needed):
    probe(running_apps)   — running check, error capture, state bookkeeping
    is_playing()          — play state seen by the last successful probe
    send_command(cmd)     — running check + error capture around _command()

Probes never query an app that is absent from ``running_apps``: ``tell
application`` would launch it.  Every failure is converted to None and
handed to the ErrorReporter; nothing is raised to the caller.
"""

import logging
from dataclasses import dataclass
from enum import Enum

import aiohttp

from ..lib.artwork import ArtworkCache
from ..lib.errors import ErrorReporter, MalformedResponse, ProbeError, ProbeUnavailable
from ..lib.osascript import DEFAULT_TIMEOUT, run_script
from ..lib.track import TrackObservation

log = logging.getLogger(__name__)

# Field separator inside script output (ASCII unit separator)
SCRIPT_DELIMITER = "\x1f"
APPLESCRIPT_DELIMITER = "(character id 31)"


class ProbeKind(str, Enum):
    NATIVE_APP = "native_app"
    BROWSER = "browser"


class Command(str, Enum):
    PLAY_PAUSE = "playpause"
    NEXT = "next"
    PREVIOUS = "previous"


@dataclass(frozen=True)
class ProbeConfig:
    """Per-app probe settings.  ``kind`` selects the probe class."""

    kind: ProbeKind
    app_id: str                               # AppleScript application name
    process_names: tuple[str, ...] = ()       # names in the process list (default: app_id)
    # Media apps
    artwork: str | None = None                # "file" (raw data) | "url" | None
    duration_scale: float = 1.0               # Spotify reports milliseconds
    # Browsers
    domains: tuple[str, ...] = ()
    title_property: str = "title"             # Safari calls it "name"

    @property
    def names(self) -> tuple[str, ...]:
        return self.process_names or (self.app_id,)


class SourceProbe:
    kind: ProbeKind = ProbeKind.NATIVE_APP

    def __init__(self, config: ProbeConfig, *, reporter: ErrorReporter | None = None,
                 artwork_cache: ArtworkCache | None = None,
                 timeout: float = DEFAULT_TIMEOUT, runner=run_script):
        self.config = config
        self.reporter = reporter or ErrorReporter()
        self.artwork_cache = artwork_cache or ArtworkCache()
        self.timeout = timeout
        self.http_session: aiohttp.ClientSession | None = None
        self._runner = runner
        self._last_playing = False

    @property
    def app_id(self) -> str:
        return self.config.app_id

    def __repr__(self):
        return f"<{type(self).__name__} {self.app_id}>"

    # ── Public contract ──

    def is_running(self, running_apps: set[str]) -> bool:
        return any(name in running_apps for name in self.config.names)

    async def probe(self, running_apps: set[str]) -> TrackObservation | None:
        """Return the app's current track, or None.  Never raises."""
        if not self.is_running(running_apps):
            self.reporter.report(ProbeUnavailable(self.app_id, "not running"))
            self._last_playing = False
            return None
        try:
            track = await self._query()
        except ProbeError as e:
            self.reporter.report(e)
            track = None
        except Exception as e:
            log.warning("Unexpected error probing %s: %s", self.app_id, e)
            self.reporter.report(MalformedResponse(self.app_id, str(e)))
            track = None
        if track is None:
            self._last_playing = False
        return track

    async def is_playing(self) -> bool:
        return self._last_playing

    async def send_command(self, cmd: Command, running_apps: set[str] | None = None) -> bool:
        """Send a transport command.  Returns False if nothing was sent."""
        if running_apps is not None and not self.is_running(running_apps):
            log.debug("Not sending %s to %s: not running", cmd.value, self.app_id)
            return False
        try:
            if not await self._command(cmd):
                return False
            log.info("%s -> %s", cmd.value, self.app_id)
            return True
        except ProbeError as e:
            self.reporter.report(e)
            return False

    # ── Helpers for subclasses ──

    async def run(self, script: str) -> str:
        return await self._runner(script, app_id=self.app_id, timeout=self.timeout)

    def tell(self, body: str) -> str:
        """Wrap script lines in a ``tell application`` block for this app."""
        return f'tell application "{self.app_id}"\n{body}\nend tell'

    # ── Abstract ──

    async def _query(self) -> TrackObservation | None:
        raise NotImplementedError

    async def _command(self, cmd: Command) -> bool:
        raise NotImplementedError

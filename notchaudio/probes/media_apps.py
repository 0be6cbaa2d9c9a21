"""
Scripted probes for dedicated media players (Music, Spotify).

One script per poll reads player state and track metadata together, fields
separated by ASCII 0x1F.  A paused player still yields a track (with
is_playing False); a stopped one yields None.

Artwork is looked up in the shared cache by fingerprint first.  On a miss:
  Music   — raw artwork data is written to a fresh temp file, read, deleted
  Spotify — the track's artwork URL is fetched over HTTP
"""

import asyncio
import logging

import aiohttp

from ..lib.artwork import read_and_discard, temp_artwork_path
from ..lib.errors import MalformedResponse, ProbeError
from ..lib.osascript import quote
from ..lib.track import SourceKind, TrackObservation, TrackSource, parse_float
from .base import APPLESCRIPT_DELIMITER, SCRIPT_DELIMITER, Command, ProbeKind, SourceProbe

log = logging.getLogger(__name__)

PLAYING_STATES = ("playing", "fast forwarding", "rewinding")
ARTWORK_FETCH_TIMEOUT = 5

_COMMAND_VERBS = {
    Command.PLAY_PAUSE: "playpause",
    Command.NEXT: "next track",
    Command.PREVIOUS: "previous track",
}

_STATE_BODY = f"""
    set D to {APPLESCRIPT_DELIMITER}
    set ps to (player state as string)
    if ps is "stopped" then return ""
    set t to current track
    return ps & D & (name of t as string) & D & (artist of t as string) & D & (album of t as string) & D & ((duration of t) as string) & D & ((player position) as string)
"""


class MediaAppProbe(SourceProbe):
    """Probe for a scriptable media player."""

    kind = ProbeKind.NATIVE_APP

    def __init__(self, config, **kwargs):
        super().__init__(config, **kwargs)
        self._artwork_lock = asyncio.Lock()

    @property
    def source(self) -> TrackSource:
        return TrackSource(SourceKind.SCRIPTED, self.app_id)

    def state_script(self) -> str:
        return self.tell(_STATE_BODY)

    # ── Query ──

    async def _query(self) -> TrackObservation | None:
        out = await self.run(self.state_script())
        if not out:
            return None  # stopped
        track, playing = self.parse_state(out)
        self._last_playing = playing
        return await self._attach_artwork(track)

    def parse_state(self, out: str) -> tuple[TrackObservation, bool]:
        parts = out.split(SCRIPT_DELIMITER)
        if len(parts) != 6:
            raise MalformedResponse(self.app_id, f"expected 6 fields, got {len(parts)}")
        state, title, artist, album, duration, position = parts
        if not title.strip():
            raise MalformedResponse(self.app_id, "empty title")
        duration_s = parse_float(duration)
        if duration_s is not None:
            duration_s /= self.config.duration_scale
        track = TrackObservation(
            title=title,
            artist=artist or None,
            album=album or None,
            source=self.source,
            duration=duration_s,
            elapsed=parse_float(position),
        )
        return track, state.strip().lower() in PLAYING_STATES

    # ── Artwork ──

    async def _attach_artwork(self, track: TrackObservation) -> TrackObservation:
        key = track.fingerprint
        cached = self.artwork_cache.get(key)
        if cached is not None:
            return track.with_artwork(cached)

        if self.config.artwork == "file":
            data = await self._artwork_from_file()
        elif self.config.artwork == "url":
            data = await self._artwork_from_url()
        else:
            data = None

        if data:
            self.artwork_cache.put(key, data)
            log.debug("Cached artwork for %s (%d bytes)", track.title, len(data))
            return track.with_artwork(data)
        return track

    def artwork_file_script(self, path: str) -> str:
        target = quote(path)
        return self.tell("""
    try
        set artData to raw data of artwork 1 of current track
    on error
        return "none"
    end try
""") + f"""
try
    set fileRef to open for access POSIX file {target} with write permission
    set eof fileRef to 0
    write artData to fileRef
    close access fileRef
on error errMsg
    try
        close access POSIX file {target}
    end try
    return "error:" & errMsg
end try
return "ok"
"""

    async def _artwork_from_file(self) -> bytes | None:
        # Serialised per app; each extraction still gets its own file
        async with self._artwork_lock:
            with temp_artwork_path() as path:
                try:
                    result = await self.run(self.artwork_file_script(path))
                except ProbeError as e:
                    self.reporter.report(e)
                    return None
                if result != "ok":
                    log.debug("%s artwork not extracted: %s", self.app_id, result)
                    return None
                return read_and_discard(path)

    async def _artwork_from_url(self) -> bytes | None:
        try:
            url = await self.run(self.tell("    return artwork url of current track"))
        except ProbeError as e:
            self.reporter.report(e)
            return None
        if not url.startswith(("http://", "https://")):
            return None
        return await self.fetch_artwork_url(url)

    async def fetch_artwork_url(self, url: str) -> bytes | None:
        """Fetch artwork bytes from *url*.  Uses a temporary session if none is set."""
        session = self.http_session
        close_session = False
        if session is None:
            session = aiohttp.ClientSession()
            close_session = True
        try:
            async with session.get(
                url, timeout=aiohttp.ClientTimeout(total=ARTWORK_FETCH_TIMEOUT)
            ) as resp:
                resp.raise_for_status()
                data = await resp.read()
            if not data:
                log.warning("Artwork URL returned 0 bytes")
                return None
            return data
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.warning("Error fetching artwork: %s", e)
            return None
        finally:
            if close_session:
                await session.close()

    # ── Commands ──

    async def _command(self, cmd: Command) -> bool:
        await self.run(self.tell(f"    {_COMMAND_VERBS[cmd]}"))
        return True

"""
Scripted probes for browsers (Chrome, Safari, Arc).

Walks every window's tabs and returns the first tab whose URL is on the
audio/video allow-list.  A browser tab gives a title and URL only: no artist,
album or artwork.  Tab titles carry a site-brand suffix (" - YouTube") which
is removed, longest match first.
"""

import logging
import re

from ..lib.errors import MalformedResponse
from ..lib.track import SourceKind, TrackObservation, TrackSource
from .base import APPLESCRIPT_DELIMITER, SCRIPT_DELIMITER, Command, ProbeKind, SourceProbe

log = logging.getLogger(__name__)

MEDIA_DOMAINS = (
    "youtube.com",
    "youtu.be",
    "music.youtube.com",
    "spotify.com",
    "music.apple.com",
    "soundcloud.com",
    "deezer.com",
    "tidal.com",
    "pandora.com",
    "nhaccuatui.com",
    "zingmp3.vn",
    "bandcamp.com",
    "audiomack.com",
)

SITE_SUFFIXES = (
    " - YouTube",
    " - YouTube Music",
    " | YouTube Music",
    " - Spotify",
    " | Spotify",
    " - Apple Music",
    " - SoundCloud",
    " | SoundCloud",
    " - Deezer",
    " | Deezer",
    " | Bandcamp",
)

# "(3) Song title - YouTube": unread-notification counter
_COUNTER_PREFIX_RE = re.compile(r"^\(\d+\+?\)\s+")


def clean_title(title: str, suffixes=SITE_SUFFIXES) -> str:
    """Strip the longest matching site suffix and any notification counter."""
    cleaned = title.strip()
    matches = [s for s in suffixes if cleaned.endswith(s)]
    if matches:
        longest = max(matches, key=len)
        cleaned = cleaned[: -len(longest)]
    cleaned = _COUNTER_PREFIX_RE.sub("", cleaned)
    return cleaned.strip()


def url_matches(url: str, domains=MEDIA_DOMAINS) -> bool:
    return any(domain in url for domain in domains)


class BrowserProbe(SourceProbe):
    """Probe for a scriptable browser's media tabs."""

    kind = ProbeKind.BROWSER

    @property
    def source(self) -> TrackSource:
        return TrackSource(SourceKind.BROWSER, self.app_id)

    def tabs_script(self) -> str:
        domains = self.config.domains or MEDIA_DOMAINS
        condition = " or ".join(f'currentURL contains "{d}"' for d in domains)
        prop = self.config.title_property
        return self.tell(f"""
    set D to {APPLESCRIPT_DELIMITER}
    repeat with w in windows
        repeat with t in tabs of w
            set currentURL to URL of t
            if currentURL is not missing value and ({condition}) then
                return ({prop} of t as string) & D & currentURL
            end if
        end repeat
    end repeat
    return ""
""")

    async def _query(self) -> TrackObservation | None:
        out = await self.run(self.tabs_script())
        if not out:
            return None
        parts = out.split(SCRIPT_DELIMITER)
        if len(parts) < 2:
            raise MalformedResponse(self.app_id, "tab result without URL")
        # URLs never contain 0x1F; anything extra belongs to the title
        url = parts[-1]
        if not url_matches(url, self.config.domains or MEDIA_DOMAINS):
            log.debug("%s: ignoring non-media tab %s", self.app_id, url)
            return None
        title = clean_title(SCRIPT_DELIMITER.join(parts[:-1]))
        if not title:
            raise MalformedResponse(self.app_id, "empty tab title")
        self._last_playing = True
        return TrackObservation(title=title, source=self.source, url=url or None)

    async def _command(self, cmd: Command) -> bool:
        if cmd is not Command.PLAY_PAUSE:
            log.info("%s: %s not supported for browser tabs", self.app_id, cmd.value)
            return False
        await self.run(
            self.tell("    activate")
            + '\ntell application "System Events"\n    keystroke " "\nend tell'
        )
        return True

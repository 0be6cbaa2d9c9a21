"""
Track data model shared by every now-playing source.

A ``TrackObservation`` is one immutable reading of "what is playing right
now" from a single source.  Two observations are the same track when title,
artist and album match; artwork, position and duration may change between
polls without the track itself changing.

Fingerprints join the three identity fields with the ASCII unit separator.
Each field is escaped first, so no title/artist/album can produce a
separator of its own, even with metadata such as "Song | With | Pipes".
"""

from dataclasses import dataclass, field, replace
from enum import Enum

FIELD_SEPARATOR = "\x1f"
_ESCAPE = "\\"
_ESCAPED_SEPARATOR = "\\u"


class SourceKind(str, Enum):
    NATIVE = "native"
    SCRIPTED = "scripted"
    BROWSER = "browser"


@dataclass(frozen=True)
class TrackSource:
    """Where an observation came from: a source family plus the app id."""

    kind: SourceKind
    app_id: str | None = None

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "app": self.app_id}

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.app_id or '?'}"


def _escape(value: str) -> str:
    return value.replace(_ESCAPE, _ESCAPE * 2).replace(FIELD_SEPARATOR, _ESCAPED_SEPARATOR)


def _unescape(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == _ESCAPE and i + 1 < len(value):
            nxt = value[i + 1]
            if nxt == _ESCAPE:
                out.append(_ESCAPE)
                i += 2
                continue
            if nxt == "u":
                out.append(FIELD_SEPARATOR)
                i += 2
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def fingerprint(title: str, artist: str | None = None, album: str | None = None) -> str:
    """Build the cache/equality key for a track.  Missing fields encode as ''."""
    return FIELD_SEPARATOR.join(_escape(v or "") for v in (title, artist, album))


def split_fingerprint(key: str) -> tuple[str, str, str]:
    """Inverse of :func:`fingerprint`.  Always returns exactly three fields."""
    parts = key.split(FIELD_SEPARATOR)
    if len(parts) != 3:
        raise ValueError(f"Malformed fingerprint ({len(parts)} fields)")
    title, artist, album = (_unescape(p) for p in parts)
    return title, artist, album


@dataclass(frozen=True)
class TrackObservation:
    title: str
    artist: str | None = None
    album: str | None = None
    source: TrackSource = field(default=TrackSource(SourceKind.NATIVE))
    artwork: bytes | None = field(default=None, repr=False)
    url: str | None = None
    duration: float | None = None
    elapsed: float | None = None

    def __post_init__(self):
        if not self.title or not self.title.strip():
            raise ValueError("TrackObservation requires a non-empty title")

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.title, self.artist, self.album)

    @property
    def display_artist(self) -> str:
        """Artist name, or the source app when the source has none (browser tabs)."""
        return self.artist or self.source.app_id or ""

    def __eq__(self, other):
        if not isinstance(other, TrackObservation):
            return NotImplemented
        return (self.title, self.artist, self.album) == (other.title, other.artist, other.album)

    def __hash__(self):
        return hash((self.title, self.artist, self.album))

    def with_artwork(self, artwork: bytes | None) -> "TrackObservation":
        return replace(self, artwork=artwork)

    def to_dict(self) -> dict:
        """JSON-friendly view (artwork excluded; the service encodes it)."""
        return {
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "source": self.source.to_dict(),
            "url": self.url,
            "duration": self.duration,
            "elapsed": self.elapsed,
        }


def parse_float(value) -> float | None:
    """Lenient float parser for script output ("12,5", "", "missing value")."""
    if value is None:
        return None
    text = str(value).strip().replace(",", ".")
    if not text or text == "missing value":
        return None
    try:
        return float(text)
    except ValueError:
        return None

"""
Probes — scripted fallbacks for the system now-playing facility.

A probe does NOT push anything.  It is asked, once per fallback cycle, what
its app is playing, and answers through AppleScript.  The aggregator walks
the roster in order and stops at the first answer, so order is the
tie-break when several apps report a track at once.

Roster (default priority):
  Music, Spotify                 — media apps (always before browsers)
  Google Chrome, Safari, Arc     — browsers, first allow-listed media tab
"""

import logging

from .base import Command, ProbeConfig, ProbeKind, SourceProbe
from .browsers import MEDIA_DOMAINS, BrowserProbe, clean_title
from .media_apps import MediaAppProbe

log = logging.getLogger(__name__)

__all__ = [
    "BrowserProbe",
    "Command",
    "DEFAULT_ROSTER",
    "MediaAppProbe",
    "ProbeConfig",
    "ProbeKind",
    "SourceProbe",
    "build_probes",
    "clean_title",
    "make_probe",
]

DEFAULT_ROSTER = (
    ProbeConfig(ProbeKind.NATIVE_APP, "Music", artwork="file"),
    ProbeConfig(ProbeKind.NATIVE_APP, "Spotify", artwork="url", duration_scale=1000.0),
    ProbeConfig(ProbeKind.BROWSER, "Google Chrome", domains=MEDIA_DOMAINS),
    ProbeConfig(ProbeKind.BROWSER, "Safari", domains=MEDIA_DOMAINS, title_property="name"),
    ProbeConfig(ProbeKind.BROWSER, "Arc", domains=MEDIA_DOMAINS),
)

_PROBE_CLASSES = {
    ProbeKind.NATIVE_APP: MediaAppProbe,
    ProbeKind.BROWSER: BrowserProbe,
}


def make_probe(config: ProbeConfig, **kwargs) -> SourceProbe:
    return _PROBE_CLASSES[config.kind](config, **kwargs)


def build_probes(order: list[str] | None = None, roster=DEFAULT_ROSTER, **kwargs) -> list[SourceProbe]:
    """Instantiate the roster in priority order.

    *order* lists app ids; unknown ids are ignored, omitted apps are dropped.
    Media apps always come before browsers regardless of *order*.
    """
    by_id = {c.app_id: c for c in roster}
    if order is None:
        configs = list(roster)
    else:
        configs = []
        for app_id in order:
            config = by_id.get(app_id)
            if config is None:
                log.warning("Unknown probe '%s' in probes.order (ignored)", app_id)
            elif config not in configs:
                configs.append(config)
    # stable: keeps the configured order within each group
    configs.sort(key=lambda c: c.kind is ProbeKind.BROWSER)
    return [make_probe(c, **kwargs) for c in configs]

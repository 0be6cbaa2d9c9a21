"""
Running-application enumeration.

Probes must never query an app that is not running: AppleScript's
``tell application`` launches the target if needed.  This module answers
"which apps are up" without touching any of them.
"""

import logging
import os

import psutil

logger = logging.getLogger(__name__)


def _app_name_from_exe(exe: str) -> str | None:
    """'/Applications/Google Chrome.app/Contents/MacOS/Google Chrome' → 'Google Chrome'."""
    marker = ".app/Contents/MacOS/"
    idx = exe.find(marker)
    if idx < 0:
        return None
    return os.path.basename(exe[:idx])


def running_apps() -> set[str]:
    """Return the set of running process and app-bundle names."""
    names: set[str] = set()
    for proc in psutil.process_iter(["name", "exe"]):
        info = proc.info
        name = info.get("name")
        if name:
            names.add(name)
        exe = info.get("exe")
        if exe:
            app = _app_name_from_exe(exe)
            if app:
                names.add(app)
    return names

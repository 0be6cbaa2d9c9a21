"""
Async AppleScript runner.

Runs ``osascript -e <script>`` as a subprocess, bounded by a timeout, and
turns failures into the probe error taxonomy:

  -1743                   → AutomationDenied (user has not granted control)
  -600 / -1728 / -10810   → ProbeUnavailable (app quit between check and query)
  timeout                 → AutomationTimeout (child is killed)
  anything else           → MalformedResponse

osascript has no cancellation primitive, so a hung script is killed on
timeout rather than cancelled.
"""

import asyncio
import logging
import re

from .errors import (
    AutomationDenied,
    AutomationTimeout,
    MalformedResponse,
    ProbeError,
    ProbeUnavailable,
)

logger = logging.getLogger(__name__)

OSASCRIPT = "osascript"
DEFAULT_TIMEOUT = 2.0

ERR_NOT_AUTHORIZED = -1743
NOT_RUNNING_ERRORS = (-600, -1728, -10810)

_ERROR_CODE_RE = re.compile(r"\((-?\d+)\)\s*$")


def error_code(stderr: str) -> int | None:
    """Extract the AppleScript error number from osascript's stderr."""
    match = _ERROR_CODE_RE.search(stderr.strip())
    return int(match.group(1)) if match else None


def classify_failure(app_id: str | None, stderr: str) -> ProbeError:
    code = error_code(stderr)
    message = stderr.strip() or "osascript failed"
    if code == ERR_NOT_AUTHORIZED:
        return AutomationDenied(app_id, message)
    if code in NOT_RUNNING_ERRORS:
        return ProbeUnavailable(app_id, message)
    return MalformedResponse(app_id, message)


async def run_process(*argv: str, app_id: str | None = None,
                      timeout: float = DEFAULT_TIMEOUT) -> tuple[int, str, str]:
    """Run a helper process, return (returncode, stdout, stderr).

    Raises ProbeUnavailable if the binary is missing and AutomationTimeout
    if it does not finish in time.  The child never outlives the call: it is
    killed on timeout and when the awaiting task is cancelled.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise ProbeUnavailable(app_id, f"{argv[0]} not found")

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        raise AutomationTimeout(app_id, f"{argv[0]} timed out after {timeout:.1f}s")
    finally:
        # Timed out or cancelled by the caller
        if proc.returncode is None:
            await reap(proc)

    return proc.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")


async def reap(proc: asyncio.subprocess.Process) -> None:
    """Kill a child that is still running and wait for it to exit."""
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()


async def run_script(script: str, *, app_id: str | None = None,
                     timeout: float = DEFAULT_TIMEOUT) -> str:
    """Run an AppleScript and return its stripped stdout.

    Only line endings are stripped: the 0x1F field separator counts as
    whitespace for ``str.strip`` and empty trailing fields must survive.
    Raises a ``ProbeError`` subclass on any failure.
    """
    rc, stdout, stderr = await run_process(OSASCRIPT, "-e", script, app_id=app_id, timeout=timeout)
    if rc != 0:
        raise classify_failure(app_id, stderr)
    return stdout.rstrip("\r\n")


def quote(value: str) -> str:
    """Quote a Python string as an AppleScript string literal."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'

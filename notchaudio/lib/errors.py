"""
Error taxonomy for now-playing sources, plus the reporter that logs them.

No source error is allowed to escape a reconciliation pass: probes catch
``ProbeError`` subclasses, hand them to ``ErrorReporter.report`` and return
None.  The only user-visible consequence is a one-time permission prompt per
app when the OS refuses automation.
"""

import logging
from typing import Callable

log = logging.getLogger(__name__)


class ProbeError(Exception):
    """Base class for failures while querying a now-playing source."""

    def __init__(self, app_id: str | None = None, message: str = ""):
        self.app_id = app_id
        super().__init__(message or self.__class__.__name__)


class ProbeUnavailable(ProbeError):
    """Target app is not running.  Not really an error: the probe is skipped."""


class AutomationDenied(ProbeError):
    """The OS refused the automation/control permission for this app."""


class AutomationTimeout(ProbeError):
    """A script or helper did not answer within its time limit."""


class MalformedResponse(ProbeError):
    """Unexpected, empty or unparseable output."""


class NativeProviderLoadFailure(ProbeError):
    """The system now-playing facility could not be loaded.  Permanent."""


PermissionPrompt = Callable[[str], None]


class ErrorReporter:
    """Logs classified probe errors and fires one-shot permission prompts."""

    def __init__(self):
        self._prompted: set[str] = set()
        self._prompt_handlers: list[PermissionPrompt] = []
        self.counts: dict[str, int] = {}

    def add_permission_handler(self, handler: PermissionPrompt) -> None:
        if handler not in self._prompt_handlers:
            self._prompt_handlers.append(handler)

    def report(self, error: ProbeError) -> None:
        name = type(error).__name__
        self.counts[name] = self.counts.get(name, 0) + 1

        if isinstance(error, ProbeUnavailable):
            return
        if isinstance(error, AutomationDenied):
            log.warning("Automation denied for %s: %s", error.app_id, error)
            self._prompt_once(error.app_id or "unknown")
        elif isinstance(error, NativeProviderLoadFailure):
            log.info("Native now-playing provider unavailable: %s", error)
        else:
            log.debug("%s from %s: %s", name, error.app_id, error)

    def was_prompted(self, app_id: str) -> bool:
        return app_id in self._prompted

    def _prompt_once(self, app_id: str) -> None:
        if app_id in self._prompted:
            return
        self._prompted.add(app_id)
        for handler in list(self._prompt_handlers):
            try:
                handler(app_id)
            except Exception as e:
                log.error("Permission prompt handler error: %s", e)

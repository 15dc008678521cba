"""Periodic readiness checking for the node plugin."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

_log = logging.getLogger(__name__)


class ReadinessCheck:
    """Runs a check at a fixed interval and remembers its latest outcome.

    The check signals failure by raising. The plugin counts as ready from
    the first successful check on; later failures are still reported.
    """

    def __init__(self, check: Callable[[], None], interval: float) -> None:
        self.check = check
        self.interval = interval
        self._lock = threading.Lock()
        self._ready = False
        self._error: Exception | None = None

    def _run_check(self) -> None:
        try:
            self.check()
        except Exception as exc:  # the check reports failure by raising anything
            _log.debug("readiness check failed: %s", exc)
            error: Exception | None = exc
        else:
            error = None
        with self._lock:
            if error is None:
                self._ready = True
            self._error = error

    def start(self, stop_event: threading.Event) -> None:
        """Check once, then at every interval until ``stop_event`` is set."""
        self._run_check()
        while not stop_event.wait(self.interval):
            self._run_check()

    def ready(self) -> tuple[bool, Exception | None]:
        """Return whether the plugin is ready and the latest check error."""
        with self._lock:
            return self._ready, self._error

    def need_leader_election(self) -> bool:
        return False
"""
Cancellable timer primitives for the scheduler.

Both timers run their callback on their own daemon thread; callbacks are
expected to do nothing but post a message back to the owner.
"""

from __future__ import annotations
import logging
import threading
from typing import Any, Callable

log = logging.getLogger("scheduler")


class OneShotTimer:
    """Calls callback(payload) once after `delay` seconds unless cancelled first."""

    def __init__(self, delay: float, callback: Callable[[Any], None], payload: Any = None):
        self.delay = delay
        self.payload = payload
        self._timer = threading.Timer(delay, callback, args=(payload,))
        self._timer.daemon = True

    def start(self) -> None:
        self._timer.start()

    def cancel(self) -> None:
        self._timer.cancel()


class RepeatingTimer:
    """Calls callback() every `interval` seconds until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self._callback = callback
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name="sampler", daemon=True)

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self._callback()
            except Exception as e:
                log.warning("Sampler tick failed: %s", e)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stopped.set()

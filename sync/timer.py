"""Cancellable periodic timer running on a daemon thread."""
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicTimer:
    """
    Call a function every `interval` seconds until cancelled.

    The first call happens one interval after start(). A tick that is
    still running when the next one is due delays it; ticks never overlap
    or pile up.
    """

    def __init__(self, interval: float, callback: Callable[[], None], name: str = 'periodic-sync'):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._stopped = threading.Event()
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and not self._stopped.is_set()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"Timer {self.name} already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.debug(f"Timer {self.name} started ({self.interval}s)")

    def cancel(self) -> None:
        """Stop future ticks. Safe to call repeatedly and from the tick itself."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        logger.debug(f"Timer {self.name} cancelled")

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Timer {self.name} tick failed: {e}", exc_info=True)

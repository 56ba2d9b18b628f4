"""
Background housekeeping thread.

PeriodicTask runs a callable every ``interval`` seconds on a daemon thread
until stopped. Used for rate-limiter and file-registry sweeps.
"""

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run ``func`` every ``interval`` seconds on a daemon thread.

    The first run happens one interval after start(). An exception raised by
    ``func`` is logged and the loop keeps going.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], object]) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._func = func
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the loop. Calling start() on a running task is a no-op."""
        with self._lock:
            if self.is_running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
            logger.debug("Started periodic task %s (every %ss)", self.name, self.interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the loop to exit and wait for the thread."""
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            logger.debug("Stopped periodic task %s", self.name)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._func()
            except Exception:
                logger.exception("Periodic task %s failed", self.name)

"""Periodic timer thread shared by the cache sweep and the background sync."""
import threading
from typing import Callable, Optional

import structlog

logger = structlog.get_logger()


class PeriodicTimer:
    """
    Runs a callback every ``interval`` seconds on a daemon thread.

    The thread waits on a stop event rather than sleeping, so ``stop()``
    returns as soon as the current tick (if any) has finished. Exceptions
    raised by the callback are logged and do not end the loop.
    """

    def __init__(self, interval: float, callback: Callable[[], object], name: str = "periodic-timer"):
        if interval <= 0:
            raise ValueError("Timer interval must be positive")
        self.interval = interval
        self.callback = callback
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the timer thread. Starting twice, or after stop(), is an error."""
        with self._lock:
            if self._thread is not None:
                raise RuntimeError(f"Timer '{self.name}' has already been started")
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.debug("timer_started", name=self.name, interval=self.interval)

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.error("timer_tick_failed", name=self.name, error=str(e))

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel the timer and wait for the thread to exit. Safe to call repeatedly."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout)
            logger.debug("timer_stopped", name=self.name)

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicWorker:
    """Runs ``fn`` every ``interval_seconds`` on a daemon thread until stopped."""

    def __init__(
        self,
        interval_seconds: float,
        fn: Callable[[], None],
        name: str = "periodic",
        immediate: bool = False,
    ) -> None:
        self.interval_seconds = interval_seconds
        self.fn = fn
        self.name = name
        self.immediate = immediate
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        if self.running or self.interval_seconds <= 0:
            return False
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("%s scheduled every %s seconds", self.name, self.interval_seconds)
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _tick(self) -> None:
        try:
            self.fn()
        except Exception:
            # keep the schedule alive; the next tick retries
            logger.exception("%s tick failed", self.name)

    def _run(self) -> None:
        if self.immediate:
            self._tick()
        while not self._stop.wait(self.interval_seconds):
            self._tick()

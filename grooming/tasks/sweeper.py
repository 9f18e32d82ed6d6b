import logging
import threading

from grooming.core.config import settings
from grooming.services.notification_dispatcher import NotificationDispatcher, SweepResult

logger = logging.getLogger(__name__)


class NotificationSweeper:
    """Runs the pending-notification sweep on a fixed interval in a background thread.

    For single-process deployments without Celery beat. `stop()` lets the batch
    in progress finish and prevents any further tick.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        interval_seconds: float | None = None,
        batch_size: int | None = None,
    ) -> None:
        if interval_seconds is None:
            interval_seconds = settings.notification_sweep_interval_seconds
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._dispatcher = dispatcher
        self._interval_seconds = interval_seconds
        self._batch_size = batch_size or settings.notification_sweep_batch_size
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> SweepResult:
        return self._dispatcher.process_pending(limit=self._batch_size)

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name="notification-sweeper", daemon=True)
            self._thread.start()
        logger.info("sweeper_started interval_seconds=%s batch_size=%s", self._interval_seconds, self._batch_size)

    def stop(self, timeout: float | None = None) -> None:
        with self._lock:
            thread = self._thread
            self._stop_event.set()
        if thread is not None:
            thread.join(timeout)
        logger.info("sweeper_stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("sweeper_tick_failed")
            self._stop_event.wait(self._interval_seconds)

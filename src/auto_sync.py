import logging
import threading
from typing import Callable, Optional

from bill_models import ReconcileResult
from reconciler import ReconciliationEngine

logger = logging.getLogger(__name__)


class AutoSyncScheduler:
    """Calls engine.refresh() every interval on a background thread.

    Ticks are skipped while suspended (view hidden) and while a previous
    reconciliation is still running, so two passes never overlap.

    Args:
        engine: reconciliation engine to drive
        interval_minutes: minutes between ticks
        on_result: called with each ReconcileResult produced by a tick
        on_error: called with any exception raised by a tick
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        interval_minutes: float,
        on_result: Optional[Callable[[ReconcileResult], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.engine = engine
        self.interval_seconds = interval_minutes * 60
        self.on_result = on_result
        self.on_error = on_error
        self._stop = threading.Event()
        self._suspended = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.ticks = 0
        self.skipped = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_suspended(self) -> bool:
        return self._suspended.is_set()

    def start(self):
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="bill-tracker-auto-sync", daemon=True)
        self._thread.start()
        logger.info("Auto-sync every %.1f minutes", self.interval_seconds / 60)

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None

    def suspend(self):
        self._suspended.set()
        logger.debug("Auto-sync suspended")

    def resume(self):
        self._suspended.clear()
        logger.debug("Auto-sync resumed")

    def tick(self) -> Optional[ReconcileResult]:
        """One scheduled pass. Returns None when the tick was skipped."""
        if self.is_suspended or self.engine.is_busy:
            self.skipped += 1
            return None
        try:
            result = self.engine.refresh(if_busy="drop")
        except Exception as e:
            logger.error("Auto-sync failed: %s", e)
            if self.on_error is not None:
                self.on_error(e)
            return None
        if result is None:
            self.skipped += 1
            return None
        self.ticks += 1
        if self.on_result is not None:
            self.on_result(result)
        return result

    def _run(self):
        while not self._stop.wait(self.interval_seconds):
            self.tick()

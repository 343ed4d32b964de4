from __future__ import annotations

import logging
import threading
from typing import Optional

from .engine import ReconciliationEngine
from .schemas import TickOutcome

log = logging.getLogger(__name__)


class PollScheduler:
    """Runs ``engine.tick`` on one worker thread with a fixed delay between ticks."""

    def __init__(self, engine: ReconciliationEngine, interval_s: float, grace_s: float = 5.0) -> None:
        self.engine = engine
        self.interval_s = float(interval_s)
        self.grace_s = float(grace_s)
        self.last_outcome: Optional[TickOutcome] = None
        self.ticks = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._shutdown_lock = threading.Lock()
        self._final_saved = False

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("scheduler already started")
        self._thread = threading.Thread(target=self._loop, name="runwatch-poll", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while not self._stop.is_set():
            outcome = self.engine.tick()
            self.last_outcome = outcome
            self.ticks += 1
            if not outcome.ok:
                log.warning("Tick %d faulted: %s", self.ticks, outcome.error)
            else:
                log.debug(
                    "Tick %d: %d scanned, %d backfilled, %d events",
                    self.ticks,
                    outcome.runs_scanned,
                    outcome.runs_backfilled,
                    outcome.events_emitted,
                )
            if self._stop.wait(self.interval_s):
                break

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def shutdown(self) -> bool:
        """Stop ticking and checkpoint state once. Returns the save result."""
        with self._shutdown_lock:
            if self._final_saved:
                return True
            self._stop.set()
            if self._thread is not None:
                self._thread.join(self.grace_s)
                if self._thread.is_alive():
                    log.warning("In-flight tick did not finish within %.1fs; saving current state", self.grace_s)
            self._final_saved = True
            return self.engine.persist()

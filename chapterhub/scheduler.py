import logging
import threading
from typing import Callable, Dict, Hashable

logger = logging.getLogger(__name__)


class FinalizeScheduler:
    """
    Best-effort in-process timers for vote countdowns.

    Timers do not survive a restart. The persisted ``end_time`` plus the
    finalize-on-read path in ``VoteStore`` are what guarantee a vote closes;
    a timer only makes it close without waiting for the next request.
    """

    def __init__(self):
        self._timers: Dict[Hashable, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, key: Hashable, delay_seconds: float, callback: Callable[[], object]) -> None:
        timer = threading.Timer(delay_seconds, self._run, args=(key, callback))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._timers[key] = timer
        timer.start()
        logger.info(f"Scheduled finalize for {key} in {delay_seconds}s")

    def cancel(self, key: Hashable) -> None:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _run(self, key: Hashable, callback: Callable[[], object]) -> None:
        with self._lock:
            self._timers.pop(key, None)
        try:
            callback()
        except Exception as e:
            # Nothing to propagate to on a timer thread; the read path will finalize
            logger.error(f"Scheduled finalize for {key} failed: {e}")


scheduler = FinalizeScheduler()


def get_scheduler() -> FinalizeScheduler:
    return scheduler

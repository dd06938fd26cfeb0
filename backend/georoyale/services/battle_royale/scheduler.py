import logging
import threading
from typing import Callable, Hashable, Set

logger = logging.getLogger(__name__)


class RoundScheduler:
    """Delayed callbacks for round timeouts, breaks and session expiry.

    - Runs each job as a Socket.IO background task
    - A key is scheduled at most once until it fires
    - Callbacks must re-check session state; a timer that outlived its
      round or session is expected to no-op
    - When disabled (tests), `schedule` drops jobs and `run_after` runs
      them inline
    """

    def __init__(self, socketio, enabled: bool = True):
        self.socketio = socketio
        self.enabled = enabled
        self._keys: Set[Hashable] = set()
        self._lock = threading.Lock()

    def pending(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._keys

    def schedule(self, key: Hashable, delay: float, callback: Callable, *args) -> bool:
        if not self.enabled:
            return False
        with self._lock:
            if key in self._keys:
                logger.info(f"[timer-skip] key={key} already scheduled")
                return False
            self._keys.add(key)
        logger.info(f"[timer-set] key={key} delay={delay}s")

        def _worker():
            self.socketio.sleep(delay)
            with self._lock:
                self._keys.discard(key)
            logger.info(f"[timer-fire] key={key}")
            try:
                callback(*args)
            except Exception:
                logger.exception(f"[timer-error] key={key}")

        self.socketio.start_background_task(_worker)
        return True

    def run_after(self, key: Hashable, delay: float, callback: Callable, *args) -> bool:
        if not self.enabled:
            callback(*args)
            return True
        return self.schedule(key, delay, callback, *args)

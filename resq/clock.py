import threading
from datetime import datetime, timezone


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ThreadingScheduler:
    """Runs callbacks after a delay on timer threads.

    ``call_later`` returns a handle with ``cancel()``.
    """

    def __init__(self):
        self._timers = set()
        self._lock = threading.Lock()

    def call_later(self, delay: float, fn, *args):
        def run():
            with self._lock:
                self._timers.discard(timer)
            fn(*args)

        timer = threading.Timer(delay, run)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()
        return timer

    def shutdown(self) -> None:
        with self._lock:
            timers, self._timers = self._timers, set()
        for timer in timers:
            timer.cancel()

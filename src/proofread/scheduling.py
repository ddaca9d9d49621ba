"""Delayed callbacks for the idle-unload timer."""

import threading
from collections.abc import Callable


class ThreadingScheduler:
    """TimerScheduler backed by daemon threading.Timer threads."""

    def call_later(
        self, delay: float, callback: Callable[[], None]
    ) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer

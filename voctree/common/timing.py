"""Context manager for timing code blocks with logging.

Authors: voctree developers
"""

import time
from contextlib import ContextDecorator

EMOJIS = {
    0: "🔥",
    1: "🚀",
    2: "⏱️",
}


class Timing(ContextDecorator):
    """Logs the wall-clock duration of the wrapped block under `label`."""

    def __init__(self, logger, label: str, level: int = 1):
        self.logger = logger
        self.label = label
        self.level = level
        self.start_time: float | None = None
        self.duration_sec: float | None = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if self.start_time is None:
            return False
        self.duration_sec = time.time() - self.start_time
        emoji = EMOJIS.get(self.level, "⏱️")
        m = int(self.duration_sec // 60)
        s = self.duration_sec % 60
        self.logger.info(f"{emoji} {self.label} took {self.duration_sec:.2f} sec. ({m:02d}:{s:05.2f})")
        return False

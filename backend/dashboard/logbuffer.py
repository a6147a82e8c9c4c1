import logging
from collections import deque
from typing import List


_lines: deque = deque(maxlen=1000)


class MemoryLogHandler(logging.Handler):
    """
    Keeps the most recent formatted log lines in memory so the status page
    can show them through GET /logs.
    """

    def __init__(self, capacity: int = 1000, level=logging.NOTSET):
        super().__init__(level)
        global _lines
        if _lines.maxlen != capacity:
            _lines = deque(_lines, maxlen=capacity)

    def emit(self, record):
        try:
            _lines.append(self.format(record))
        except Exception:
            self.handleError(record)


def recent_lines() -> List[str]:
    return list(_lines)


def clear() -> None:
    _lines.clear()

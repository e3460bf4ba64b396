"""Per-workload bounded log buffer for captured output and lifecycle annotations."""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime

from launch_control.models.workload import LogEntry

DEFAULT_MAX_LINES = 1000


class LogBuffer:
    """Keeps the most recent ``max_lines`` entries per workload, oldest evicted first."""

    def __init__(self, max_lines: int = DEFAULT_MAX_LINES) -> None:
        if max_lines <= 0:
            raise ValueError("max_lines must be positive")
        self.max_lines = max_lines
        self._buffers: dict[str, deque[LogEntry]] = {}
        self._lock = threading.Lock()

    def append(self, workload_id: str, line: str) -> LogEntry:
        entry = LogEntry(timestamp=datetime.now(), line=line)
        with self._lock:
            buf = self._buffers.get(workload_id)
            if buf is None:
                buf = self._buffers[workload_id] = deque(maxlen=self.max_lines)
            buf.append(entry)
        return entry

    def read(self, workload_id: str) -> list[LogEntry]:
        with self._lock:
            return list(self._buffers.get(workload_id, ()))

    def lines(self, workload_id: str) -> list[str]:
        return [entry.render() for entry in self.read(workload_id)]

    def clear(self, workload_id: str) -> None:
        with self._lock:
            self._buffers.pop(workload_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffers)

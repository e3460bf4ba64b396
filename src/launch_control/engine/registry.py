"""The single source of truth for supervised workloads."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class LiveHandle:
    """Runtime-only reference to a spawned workload process. Never persisted."""

    workload_id: str
    process: asyncio.subprocess.Process
    container: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    ready: bool = False
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    watcher: asyncio.Task | None = None

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def exited(self) -> bool:
        return self.process.returncode is not None


class ProcessRegistry:
    """Thread-safe, id-indexed map of live handles, at most one per workload."""

    def __init__(self) -> None:
        self._handles: dict[str, LiveHandle] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock = threading.Lock()

    def register(self, workload_id: str, handle: LiveHandle) -> None:
        with self._lock:
            if workload_id in self._handles:
                raise ValueError(f"Workload '{workload_id}' is already registered")
            self._handles[workload_id] = handle

    def lookup(self, workload_id: str) -> LiveHandle | None:
        with self._lock:
            return self._handles.get(workload_id)

    def unregister(self, workload_id: str) -> LiveHandle | None:
        with self._lock:
            return self._handles.pop(workload_id, None)

    def unregister_if(self, workload_id: str, handle: LiveHandle) -> bool:
        """Remove the entry only if it still points at ``handle``."""
        with self._lock:
            if self._handles.get(workload_id) is handle:
                del self._handles[workload_id]
                return True
            return False

    def is_running(self, workload_id: str) -> bool:
        with self._lock:
            return workload_id in self._handles

    @property
    def running_count(self) -> int:
        with self._lock:
            return len(self._handles)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._handles)

    def lock_for(self, workload_id: str) -> asyncio.Lock:
        """Per-workload lock serializing the check/spawn/register sequence."""
        with self._lock:
            lock = self._locks.get(workload_id)
            if lock is None:
                lock = self._locks[workload_id] = asyncio.Lock()
            return lock

    def __len__(self) -> int:
        return self.running_count

    def __contains__(self, workload_id: str) -> bool:
        return self.is_running(workload_id)

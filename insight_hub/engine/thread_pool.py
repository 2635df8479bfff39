"""Named bounded thread pools for the poll fan-out and job batches."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Dict


class ThreadPoolManager:
    """Hand out one bounded executor per named workload."""

    def __init__(self, default_workers: int = 4) -> None:
        self.default_workers = default_workers
        self._executors: Dict[str, ThreadPoolExecutor] = {}
        self._lock = Lock()

    def get(self, name: str, max_workers: int | None = None) -> ThreadPoolExecutor:
        with self._lock:
            if name not in self._executors:
                self._executors[name] = ThreadPoolExecutor(
                    max_workers=max_workers or self.default_workers,
                    thread_name_prefix=f"insight-{name}",
                )
            return self._executors[name]

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._executors)

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            for executor in self._executors.values():
                executor.shutdown(wait=wait)
            self._executors.clear()


__all__ = ["ThreadPoolManager"]

"""In-memory priority queue of waiting job records."""

from __future__ import annotations

from collections.abc import Callable, Iterator
import threading

from backoffice.jobs.models import JobRecord


class PriorityQueue:
    """Ordered list of queued jobs, lowest priority number first.

    Jobs sharing a priority keep their insertion order. The queue lock is an
    ``RLock`` exposed as :attr:`lock` so callers can combine a lookup with a
    mutation atomically.
    """

    def __init__(self) -> None:
        self._items: list[JobRecord] = []
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def insert(self, job: JobRecord) -> int:
        """Insert ``job`` and return its 1-based position."""

        with self._lock:
            if any(item.id == job.id for item in self._items):
                raise ValueError(f"Job {job.id} is already queued")
            for index, item in enumerate(self._items):
                if item.priority > job.priority:
                    self._items.insert(index, job)
                    return index + 1
            self._items.append(job)
            return len(self._items)

    def remove_next(self) -> JobRecord | None:
        with self._lock:
            if not self._items:
                return None
            return self._items.pop(0)

    def remove_first(self, predicate: Callable[[JobRecord], bool]) -> JobRecord | None:
        """Pop the highest ranked job accepted by ``predicate``."""

        with self._lock:
            for index, item in enumerate(self._items):
                if predicate(item):
                    return self._items.pop(index)
            return None

    def remove(self, job_id: str) -> JobRecord | None:
        with self._lock:
            for index, item in enumerate(self._items):
                if item.id == job_id:
                    return self._items.pop(index)
            return None

    def get(self, job_id: str) -> JobRecord | None:
        with self._lock:
            for item in self._items:
                if item.id == job_id:
                    return item
            return None

    def position_of(self, job_id: str) -> int:
        with self._lock:
            for index, item in enumerate(self._items):
                if item.id == job_id:
                    return index + 1
            return 0

    def snapshot(self) -> list[JobRecord]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return any(item.id == job_id for item in self._items)

    def __iter__(self) -> Iterator[JobRecord]:
        return iter(self.snapshot())


__all__ = ["PriorityQueue"]

"""Ready queue ordering email jobs by priority tier, then insertion order."""

from __future__ import annotations

import heapq
import itertools
from typing import Iterator, List, Tuple

from .models import EmailJob


class PriorityQueue:
    """Unbounded in-memory queue of jobs ready for delivery.

    Jobs leave in descending :class:`~conference_mailer.models.Priority`
    order; within a tier the earliest insertion wins. Each insertion stamps
    a fresh monotonic ``sequence`` on the job, so a retried job queues behind
    jobs of its tier that arrived while it was waiting.
    """

    def __init__(self) -> None:
        self._heap: List[Tuple[int, int, EmailJob]] = []
        self._counter = itertools.count(1)

    def enqueue(self, job: EmailJob) -> None:
        job.sequence = next(self._counter)
        priority, sequence = job.sort_key()
        heapq.heappush(self._heap, (priority, sequence, job))

    def dequeue_next(self) -> EmailJob:
        """Remove and return the highest priority, earliest job.

        Raises:
            IndexError: if the queue is empty.
        """
        if not self._heap:
            raise IndexError("dequeue from an empty queue")
        return heapq.heappop(self._heap)[2]

    def is_empty(self) -> bool:
        return not self._heap

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    def __iter__(self) -> Iterator[EmailJob]:
        """Iterate over a snapshot in dequeue order without consuming it."""
        return iter([entry[2] for entry in sorted(self._heap)])

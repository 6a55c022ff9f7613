"""
Bounded hand-off between the producer task and the dispatch loop.

Exactly one writer and one reader. A push blocks while the queue is
full, which is how the dispatcher's pacing throttles the producer.
"""
import threading
from collections import deque
from typing import Deque, Iterator, Optional

from trawler.models import Target, RunCancelled, QueueClosedError

# How often blocked callers re-check the cancellation event
_CANCEL_POLL_SECONDS = 0.1


class TargetQueue:
    """Single-writer/single-reader bounded queue of Targets."""

    def __init__(self, capacity: int = 1, cancel_event: Optional[threading.Event] = None):
        """
        Initialize queue.

        Args:
            capacity: Maximum buffered targets (>= 1)
            cancel_event: Shared cancellation event; unblocks push and pop
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.cancel_event = cancel_event or threading.Event()
        self._items: Deque[Target] = deque()
        self._closed = False
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def push(self, target: Target) -> None:
        """
        Hand a target to the reader, blocking while the queue is full.

        Raises:
            QueueClosedError: If the queue was already closed
            RunCancelled: If the run is cancelled while waiting
        """
        with self._cond:
            while True:
                if self._closed:
                    raise QueueClosedError("push on closed queue")
                if self.cancel_event.is_set():
                    raise RunCancelled("cancelled while pushing target")
                if len(self._items) < self.capacity:
                    break
                self._cond.wait(_CANCEL_POLL_SECONDS)

            self._items.append(target)
            self._cond.notify_all()

    def pop(self) -> Optional[Target]:
        """
        Take the next target, blocking until one is available.

        Returns:
            The next Target, or None once the queue is closed and drained

        Raises:
            RunCancelled: If the run is cancelled while waiting
        """
        with self._cond:
            while not self._items:
                if self._closed:
                    return None
                if self.cancel_event.is_set():
                    raise RunCancelled("cancelled while waiting for target")
                self._cond.wait(_CANCEL_POLL_SECONDS)

            target = self._items.popleft()
            self._cond.notify_all()
            return target

    def close(self) -> None:
        """
        Signal that no more targets will be pushed.

        Raises:
            QueueClosedError: On a second close
        """
        with self._cond:
            if self._closed:
                raise QueueClosedError("queue closed twice")
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[Target]:
        while True:
            target = self.pop()
            if target is None:
                return
            yield target

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

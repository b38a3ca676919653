"""Broadcast channel for immutable state snapshots."""

import logging
import queue
import threading
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StateChannel(Generic[T]):
    """Publishes snapshots to subscriber queues and listener callbacks.

    Published items are frozen dataclasses; receivers must not mutate them.
    """

    def __init__(self, name: str, initial: Optional[T] = None, maxsize: int = 256):
        self.name = name
        self._latest = initial
        self._maxsize = maxsize
        self._lock = threading.Lock()
        self._subscribers: list[queue.Queue] = []
        self._listeners: list[Callable[[T], None]] = []

    def publish(self, item: T) -> None:
        """Broadcast an item to every subscriber."""
        with self._lock:
            self._latest = item
            subscribers = list(self._subscribers)
            listeners = list(self._listeners)

        for q in subscribers:
            try:
                q.put_nowait(item)
            except queue.Full:
                logger.warning(f"{self.name} subscriber queue full, dropping oldest")
                try:
                    q.get_nowait()
                except queue.Empty:
                    pass
                q.put_nowait(item)

        for listener in listeners:
            try:
                listener(item)
            except Exception as e:
                logger.error(f"{self.name} listener error: {e}")

    def subscribe(self) -> queue.Queue:
        """Return a new queue receiving every item published from now on."""
        q: queue.Queue = queue.Queue(maxsize=self._maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        """Stop delivering to a subscriber queue."""
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def add_listener(self, callback: Callable[[T], None]) -> None:
        """Register a callback invoked synchronously on publish."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[T], None]) -> None:
        """Unregister a callback."""
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    @property
    def latest(self) -> Optional[T]:
        """Most recently published item."""
        with self._lock:
            return self._latest

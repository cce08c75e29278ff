"""Publish/subscribe seam used for the broadcast channel."""

from __future__ import annotations

import queue
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional


class BusError(RuntimeError):
    """Raised when a payload cannot be handed to the broadcast channel."""


class Subscription:
    """Lazy stream of text payloads received on one topic.

    Iterating blocks until the next payload arrives and stops once the
    subscription is closed.
    """

    _CLOSED = object()

    def __init__(self, topic: str):
        self.topic = topic
        self._queue: "queue.Queue[object]" = queue.Queue()
        self.closed = False

    def deliver(self, payload: str) -> None:
        if not self.closed:
            self._queue.put(payload)

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """Return the next payload, or ``None`` on timeout or close."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is self._CLOSED:
            self._queue.put(item)
            return None
        return item  # type: ignore[return-value]

    def drain(self) -> List[str]:
        """Return every payload already received without blocking."""
        items = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return items
            if item is self._CLOSED:
                self._queue.put(item)
                return items
            items.append(item)  # type: ignore[arg-type]

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put(self._CLOSED)

    def __iter__(self) -> Iterator[str]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item


class MessageBus(ABC):
    """Minimal contract the game needs from a message bus."""

    @abstractmethod
    def publish(self, topic: str, payload: str) -> None:
        """Publish ``payload`` on ``topic``; raise :class:`BusError` on failure."""

    @abstractmethod
    def subscribe(self, topic: str) -> Subscription:
        """Start receiving payloads published on ``topic`` from now on."""

    def start(self) -> None:
        """Acquire transport resources before the first publication."""

    def close(self) -> None:
        """Release transport resources."""


class InMemoryBus(MessageBus):
    """Process-local bus fanning payloads out to every subscription."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def publish(self, topic: str, payload: str) -> None:
        with self._lock:
            subscribers = [sub for sub in self._subscriptions.get(topic, []) if not sub.closed]
            self._subscriptions[topic] = subscribers
        for subscription in subscribers:
            subscription.deliver(payload)

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(topic)
        with self._lock:
            self._subscriptions.setdefault(topic, []).append(subscription)
        return subscription

    def close(self) -> None:
        with self._lock:
            subscriptions = [sub for subs in self._subscriptions.values() for sub in subs]
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.close()

"""
Broadcast Channels
==================

Bounded Context: In-Process Fan-Out

Bounded multi-consumer channel with drop-oldest overflow, used by the
ConnectionManager for the connection-event stream and the message stream.

Design:
- Each receiver owns a bounded deque; a full deque drops its oldest item
- Publishing never blocks, so a slow consumer never stalls ingestion
- A replay buffer (same bound) primes new receivers with recent items

Example:
    >>> channel = BroadcastChannel(capacity=10)
    >>> receiver = channel.subscribe()
    >>> channel.publish("connected")
    >>> receiver.get(timeout=1.0)
    'connected'
"""

import threading
from collections import deque
from typing import Deque, Generic, List, Optional, TypeVar

T = TypeVar('T')


class Receiver(Generic[T]):
    """
    One consumer's view of a BroadcastChannel.

    Thread Safety:
        ``get`` may be called from one consumer thread while the producer
        publishes from another.
    """

    def __init__(self, channel: 'BroadcastChannel[T]', capacity: int):
        self._channel = channel
        self._items: Deque[T] = deque(maxlen=capacity)
        self._cond = threading.Condition()
        self._closed = False
        self.dropped = 0

    def _push(self, item: T) -> None:
        with self._cond:
            if self._closed:
                return
            if len(self._items) == self._items.maxlen:
                self.dropped += 1
            self._items.append(item)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Next item, waiting up to ``timeout`` seconds.

        Returns:
            The oldest buffered item, or None on timeout or once closed
        """
        with self._cond:
            if not self._items and not self._closed:
                self._cond.wait(timeout)
            if self._items:
                return self._items.popleft()
            return None

    def drain(self) -> List[T]:
        """Return and remove every buffered item without waiting."""
        with self._cond:
            items = list(self._items)
            self._items.clear()
            return items

    def close(self) -> None:
        """Detach from the channel and wake a blocked ``get``."""
        self._channel._detach(self)
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)


class BroadcastChannel(Generic[T]):
    """
    Bounded broadcast channel with drop-oldest overflow.

    Attributes:
        capacity: Per-receiver buffer size and replay depth
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._lock = threading.Lock()
        self._replay: Deque[T] = deque(maxlen=capacity)
        self._receivers: List[Receiver[T]] = []

    def publish(self, item: T) -> None:
        """Deliver ``item`` to every receiver. Never blocks."""
        with self._lock:
            self._replay.append(item)
            receivers = list(self._receivers)

        for receiver in receivers:
            receiver._push(item)

    def subscribe(self, replay: bool = False) -> Receiver[T]:
        """
        Create a receiver.

        Args:
            replay: Prime the receiver with the replay buffer
        """
        receiver: Receiver[T] = Receiver(self, self.capacity)
        with self._lock:
            if replay:
                for item in self._replay:
                    receiver._push(item)
            self._receivers.append(receiver)
        return receiver

    def replay(self) -> List[T]:
        """Snapshot of the most recent items (oldest first)."""
        with self._lock:
            return list(self._replay)

    def _detach(self, receiver: Receiver[T]) -> None:
        with self._lock:
            if receiver in self._receivers:
                self._receivers.remove(receiver)

    @property
    def receiver_count(self) -> int:
        with self._lock:
            return len(self._receivers)

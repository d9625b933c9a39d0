"""
unillm - Delivery Channel

Bounded single-producer/single-consumer hand-off between a stream task and
its consumer.

- send() waits while the channel is full, so a slow consumer throttles the
  producer instead of growing memory
- once the receiver closes, send() returns False and the producer stops
- once a terminal event is sent, the channel accepts nothing more
"""

import asyncio
from typing import Optional

from ..config import DEFAULT_CHANNEL_CAPACITY
from .events import NormalizedEvent


_CLOSED = object()


class DeliveryChannel:
    """Bounded queue of NormalizedEvent with close semantics on both ends."""

    def __init__(self, capacity: int = DEFAULT_CHANNEL_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._sender_closed = False
        self._receiver_closed = False

    @property
    def receiver_closed(self) -> bool:
        return self._receiver_closed

    @property
    def sender_closed(self) -> bool:
        return self._sender_closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def send(self, event: NormalizedEvent) -> bool:
        """
        Deliver an event, waiting for space if the channel is full.

        Returns:
            False if the receiver is gone or the stream already ended
        """
        if self._receiver_closed or self._sender_closed:
            return False

        await self._queue.put(event)

        # Receiver may have closed while we waited for space
        if self._receiver_closed:
            return False

        if event.is_terminal:
            self.close_sender()
        return True

    async def receive(self) -> Optional[NormalizedEvent]:
        """Next event, or None once the sender has closed and the queue is drained."""
        if self._receiver_closed:
            return None
        if self._sender_closed and self._queue.empty():
            return None

        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def close_sender(self):
        """No more events will be sent. Wakes a receiver waiting on an empty queue."""
        if self._sender_closed:
            return
        self._sender_closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # The receiver is not waiting; it will see sender_closed after draining
            pass

    def close_receiver(self):
        """Consumer is gone. Drops buffered events and wakes a blocked sender."""
        self._receiver_closed = True
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

"""Bounded single-producer, multi-consumer broadcast of blocks."""

from __future__ import annotations

import asyncio

from pdd.config.models import OverflowPolicy

# End-of-stream marker; blocks are never empty.
_END = b""


class Subscription:
    """One consumer's bounded view of the broadcast."""

    def __init__(self, name: str, maxsize: int) -> None:
        self.name = name
        self.dropped = 0
        self.closed = False
        self._queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=maxsize)

    async def get(self) -> bytes | None:
        """Next block in publish order, or ``None`` once the channel is closed."""
        block = await self._queue.get()
        return block or None

    def close(self) -> None:
        """Detach this consumer; queued blocks are discarded."""
        self.closed = True
        # Frees the slot a suspended publisher may be waiting on.
        while not self._queue.empty():
            self._queue.get_nowait()


class BroadcastChannel:
    """Delivers every published block to every open subscription.

    ``BACKPRESSURE``: :meth:`publish` suspends until each open subscription
    has room, so nothing is lost and the slowest sink paces the reader.

    ``DROP``: :meth:`publish` never suspends; a subscription whose queue is
    full misses the block and its ``dropped`` counter is incremented.
    """

    def __init__(
        self, maxsize: int, policy: OverflowPolicy = OverflowPolicy.BACKPRESSURE
    ) -> None:
        self._maxsize = maxsize
        self._policy = policy
        self._subscriptions: list[Subscription] = []
        self._closed = False

    def subscribe(self, name: str) -> Subscription:
        if self._closed:
            msg = "Cannot subscribe to a closed channel"
            raise RuntimeError(msg)
        sub = Subscription(name, self._maxsize)
        self._subscriptions.append(sub)
        return sub

    async def publish(self, block: bytes) -> None:
        if not block:
            msg = "Cannot publish an empty block"
            raise ValueError(msg)
        if self._closed:
            msg = "Cannot publish to a closed channel"
            raise RuntimeError(msg)

        full: list[Subscription] = []
        for sub in self._subscriptions:
            if sub.closed:
                continue
            try:
                sub._queue.put_nowait(block)
            except asyncio.QueueFull:
                if self._policy == OverflowPolicy.DROP:
                    sub.dropped += 1
                else:
                    full.append(sub)

        # Subscriptions with room already have the block; wait on the rest.
        for sub in full:
            if not sub.closed:
                await sub._queue.put(block)

    async def close(self) -> None:
        """Signal end-of-stream to every open subscription."""
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            if not sub.closed:
                await sub._queue.put(_END)

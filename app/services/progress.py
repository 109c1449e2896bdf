from __future__ import annotations

import asyncio
from collections import deque
from typing import AsyncIterator

from app.models.research import ResearchJob

_CLOSED = object()


class _Subscription:
    """Bounded mailbox that keeps the newest items when full."""

    def __init__(self, maxsize: int):
        self.items: deque = deque(maxlen=maxsize)
        self.ready = asyncio.Event()

    def push(self, item: object) -> None:
        self.items.append(item)
        self.ready.set()

    async def next(self) -> object:
        while not self.items:
            self.ready.clear()
            await self.ready.wait()
        return self.items.popleft()


class ProgressBroadcaster:
    """Fans job snapshots out to any number of consumers.

    One producer (the orchestrator) publishes; each consumer has its own
    bounded mailbox. A slow consumer may miss intermediate snapshots but
    always receives the newest one, so the terminal snapshot is never lost.
    """

    def __init__(self, maxsize: int = 8):
        self._maxsize = max(2, maxsize)
        self._subscriptions: list[_Subscription] = []
        self._latest: ResearchJob | None = None
        self._closed = False

    @property
    def latest(self) -> ResearchJob | None:
        return self._latest

    def publish(self, job: ResearchJob) -> None:
        snapshot = job.snapshot()
        self._latest = snapshot
        for sub in self._subscriptions:
            sub.push(snapshot)
        if snapshot.is_terminal:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            sub.push(_CLOSED)

    def subscribe(self) -> AsyncIterator[ResearchJob]:
        """Register a consumer now; iterate the result to receive snapshots."""
        sub = _Subscription(self._maxsize)
        if self._latest is not None:
            sub.push(self._latest)
        if self._closed:
            sub.push(_CLOSED)
        self._subscriptions.append(sub)
        return self._drain(sub)

    async def _drain(self, sub: _Subscription) -> AsyncIterator[ResearchJob]:
        try:
            while True:
                item = await sub.next()
                if item is _CLOSED:
                    return
                yield item
        finally:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

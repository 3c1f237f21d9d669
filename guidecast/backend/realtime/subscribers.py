from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field


@dataclass(eq=False)
class Subscriber:
    """One live event-stream connection.

    The queue stands in for the push channel: ``send`` never waits, and a
    full queue (slow consumer) or a closed subscriber counts as a failed write.
    """

    client_id: int
    lang: str
    queue_size: int
    connected_at: float = field(default_factory=time.time)
    closed: bool = False
    heartbeat: asyncio.TimerHandle | None = None
    queue: asyncio.Queue[str | None] = field(init=False)

    def __post_init__(self) -> None:
        self.queue = asyncio.Queue(maxsize=self.queue_size)

    def send(self, payload: str) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.heartbeat is not None:
            self.heartbeat.cancel()
            self.heartbeat = None
        try:
            # wake a reader blocked on an empty queue
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def next_event(self) -> str | None:
        if self.closed and self.queue.empty():
            return None
        return await self.queue.get()


class SubscriberRegistry:
    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._ids = itertools.count(1)
        self._subscribers: dict[int, Subscriber] = {}

    def __len__(self) -> int:
        return len(self._subscribers)

    def add(self, lang: str) -> Subscriber:
        sub = Subscriber(client_id=next(self._ids), lang=lang, queue_size=self._queue_size)
        self._subscribers[sub.client_id] = sub
        return sub

    def remove(self, client_id: int) -> Subscriber | None:
        sub = self._subscribers.pop(client_id, None)
        if sub is not None:
            sub.close()
        return sub

    def get(self, client_id: int) -> Subscriber | None:
        return self._subscribers.get(client_id)

    def all(self) -> list[Subscriber]:
        return list(self._subscribers.values())

    def for_lang(self, lang: str) -> list[Subscriber]:
        return [sub for sub in self._subscribers.values() if sub.lang == lang]

    def count(self, lang: str | None = None) -> int:
        if lang is None:
            return len(self._subscribers)
        return sum(1 for sub in self._subscribers.values() if sub.lang == lang)

    def by_lang(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for sub in self._subscribers.values():
            out[sub.lang] = out.get(sub.lang, 0) + 1
        return out

    def close_all(self) -> None:
        for client_id in list(self._subscribers):
            self.remove(client_id)

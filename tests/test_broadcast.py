from __future__ import annotations

import asyncio
import json

from guidecast.backend.realtime.broadcast import BroadcastRouter, format_sse
from guidecast.backend.realtime.settings_store import VisitorSettingsStore
from guidecast.backend.realtime.subscribers import Subscriber, SubscriberRegistry


def _events(sub: Subscriber) -> list[tuple[int, str, dict]]:
    out = []
    while not sub.queue.empty():
        payload = sub.queue.get_nowait()
        if payload is None:
            break
        fields = dict(line.split(": ", 1) for line in payload.strip().splitlines())
        out.append((int(fields["id"]), fields["event"], json.loads(fields["data"])))
    return out


def _router(queue_size: int = 16, heartbeat_ms: int = 60_000) -> BroadcastRouter:
    return BroadcastRouter(
        SubscriberRegistry(queue_size=queue_size),
        VisitorSettingsStore(),
        heartbeat_ms=heartbeat_ms,
    )


def test_format_sse_wire_shape():
    assert format_sse(7, "chunk", {"text": "ciao", "seq": 1}) == (
        'id: 7\nevent: chunk\ndata: {"text":"ciao","seq":1}\n\n'
    )


def test_subscribe_sends_hello_first():
    async def scenario():
        router = _router()
        sub = router.subscribe("en")
        return sub, _events(sub)

    sub, events = asyncio.run(scenario())
    assert len(events) == 1
    _, name, data = events[0]
    assert name == "hello"
    assert data == {"lang": "en", "clientId": sub.client_id}


def test_late_joiner_receives_clamped_settings_before_chunks():
    async def scenario():
        router = _router()
        router.settings.update("it", 3.0)
        sub = router.subscribe("it")
        router.broadcast("it", "chunk", {"text": "ciao", "ts": 1, "seq": 1})
        return _events(sub)

    events = asyncio.run(scenario())
    assert [name for _, name, _ in events] == ["hello", "settings", "chunk"]
    assert events[1][2] == {"ttsRate": 2.0}


def test_broadcast_only_reaches_matching_language():
    async def scenario():
        router = _router()
        en = router.subscribe("en")
        fr = router.subscribe("fr")
        _events(en)
        _events(fr)
        count = router.broadcast("en", "chunk", {"text": "hi"})
        return count, _events(en), _events(fr)

    count, en_events, fr_events = asyncio.run(scenario())
    assert count == 1
    assert [name for _, name, _ in en_events] == ["chunk"]
    assert fr_events == []


def test_failed_push_prunes_subscriber_and_continues():
    async def scenario():
        router = _router(queue_size=2)
        stuck = router.subscribe("en")
        healthy = router.subscribe("en")
        stuck.queue.put_nowait("backlog")
        _events(healthy)
        count = router.broadcast("en", "chunk", {"text": "hi"})
        return router, stuck, healthy, count

    router, stuck, healthy, count = asyncio.run(scenario())
    assert count == 1
    assert router.registry.get(stuck.client_id) is None
    assert router.registry.get(healthy.client_id) is healthy
    assert stuck.closed is True
    assert router.client_count("en") == 1


def test_event_ids_are_global_and_increasing():
    async def scenario():
        router = _router()
        a = router.subscribe("en")
        b = router.subscribe("de")
        router.broadcast("de", "chunk", {"text": "x"})
        router.broadcast("en", "chunk", {"text": "y"})
        return _events(a) + _events(b)

    events = asyncio.run(scenario())
    ids = sorted(event_id for event_id, _, _ in events)
    assert len(ids) == len(set(ids)) == 4
    assert ids == [1, 2, 3, 4]


def test_heartbeat_pings_until_unsubscribed():
    async def scenario():
        router = _router(heartbeat_ms=20)
        sub = router.subscribe("zh")
        await asyncio.sleep(0.09)
        pings = [data for _, name, data in _events(sub) if name == "ping"]
        router.unsubscribe(sub.client_id)
        await asyncio.sleep(0.05)
        return sub, pings

    sub, pings = asyncio.run(scenario())
    assert len(pings) >= 2
    assert all(isinstance(p["t"], int) for p in pings)
    assert sub.heartbeat is None
    assert sub.closed is True


def test_heartbeat_failure_prunes_dead_connection():
    async def scenario():
        router = _router(queue_size=1, heartbeat_ms=20)
        sub = router.subscribe("ar")  # hello fills the queue
        await asyncio.sleep(0.05)
        return router, sub

    router, sub = asyncio.run(scenario())
    assert router.registry.get(sub.client_id) is None


def test_unsubscribe_is_idempotent():
    async def scenario():
        router = _router()
        sub = router.subscribe("en")
        router.unsubscribe(sub.client_id)
        router.unsubscribe(sub.client_id)
        return router

    router = asyncio.run(scenario())
    assert router.client_count() == 0

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from typing import Any

from guidecast.backend.realtime.settings_store import VisitorSettingsStore
from guidecast.backend.realtime.subscribers import Subscriber, SubscriberRegistry

logger = logging.getLogger("guidecast.broadcast")


def format_sse(event_id: int, event: str, data: dict[str, Any]) -> str:
    body = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    return f"id: {event_id}\nevent: {event}\ndata: {body}\n\n"


class BroadcastRouter:
    """Fan-out of events to the subscribers of one language.

    A failed push is the only disconnect signal some transports give, so any
    failed ``send`` removes the subscriber on the spot.
    """

    def __init__(
        self,
        registry: SubscriberRegistry,
        settings: VisitorSettingsStore,
        *,
        heartbeat_ms: int = 15000,
    ) -> None:
        self.registry = registry
        self.settings = settings
        self.heartbeat_s = heartbeat_ms / 1000.0
        self._event_ids = itertools.count(1)
        self.last_event_id = 0

    def _next_id(self) -> int:
        self.last_event_id = next(self._event_ids)
        return self.last_event_id

    def has_receiver(self, lang: str) -> bool:
        return self.registry.count(lang) > 0

    def client_count(self, lang: str | None = None) -> int:
        return self.registry.count(lang)

    def _push(self, sub: Subscriber, payload: str) -> bool:
        if sub.send(payload):
            return True
        logger.info("pruning subscriber %s (%s): push failed", sub.client_id, sub.lang)
        self.unsubscribe(sub.client_id)
        return False

    def subscribe(self, lang: str) -> Subscriber:
        sub = self.registry.add(lang)
        self._push(sub, format_sse(self._next_id(), "hello", {"lang": lang, "clientId": sub.client_id}))
        known = self.settings.get(lang)
        if known is not None:
            self._push(sub, format_sse(self._next_id(), "settings", known.to_event()))
        if not sub.closed:
            self._arm_heartbeat(sub)
        logger.info(
            "subscriber %s connected (%s), %s live for this language",
            sub.client_id,
            lang,
            self.registry.count(lang),
        )
        return sub

    def unsubscribe(self, client_id: int) -> None:
        sub = self.registry.remove(client_id)
        if sub is not None:
            logger.info("subscriber %s disconnected (%s)", client_id, sub.lang)

    def broadcast(self, lang: str, event: str, data: dict[str, Any]) -> int:
        targets = self.registry.for_lang(lang)
        if not targets:
            return 0
        payload = format_sse(self._next_id(), event, data)
        delivered = 0
        for sub in targets:
            if self._push(sub, payload):
                delivered += 1
        return delivered

    def _arm_heartbeat(self, sub: Subscriber) -> None:
        loop = asyncio.get_running_loop()
        sub.heartbeat = loop.call_later(self.heartbeat_s, self._heartbeat, sub.client_id)

    def _heartbeat(self, client_id: int) -> None:
        sub = self.registry.get(client_id)
        if sub is None:
            return
        sub.heartbeat = None
        ping = format_sse(self._next_id(), "ping", {"t": int(time.time() * 1000)})
        if self._push(sub, ping):
            self._arm_heartbeat(sub)

    def close(self) -> None:
        self.registry.close_all()

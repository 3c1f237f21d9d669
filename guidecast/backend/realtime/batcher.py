from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from functools import partial

from fastapi.concurrency import run_in_threadpool

from guidecast.backend.config import AppConfig
from guidecast.backend.realtime.broadcast import BroadcastRouter
from guidecast.backend.realtime.metrics import SlidingTranslationMetrics
from guidecast.backend.realtime.session_log import SessionLog
from guidecast.backend.services.translator import TranslatorLike
from guidecast.backend.types import SessionLogEntry

logger = logging.getLogger("guidecast.batch")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class PendingBatch:
    lang: str
    fragments: list[str]
    seq: int | float | None
    ts: int | float
    started_at: float
    max_wait: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def source_text(self) -> str:
        return " ".join(self.fragments)


class BatchEngine:
    """Per-language debounce and batching in front of the translator.

    A batch flushes on the earlier of ``debounce_ms`` of silence or
    ``max_wait_ms`` since its first fragment. All mutation happens on the
    event loop thread; ``flush`` removes the batch before anything awaits, so
    a racing second timer finds nothing to do.
    """

    def __init__(
        self,
        config: AppConfig,
        translator: TranslatorLike,
        router: BroadcastRouter,
        session_log: SessionLog,
        metrics: SlidingTranslationMetrics | None = None,
    ) -> None:
        self.translator = translator
        self.router = router
        self.session_log = session_log
        self.metrics = metrics
        self.debounce_s = config.debounce_ms / 1000.0
        self.max_wait_s = config.max_wait_ms / 1000.0
        self.shutdown_grace_s = config.shutdown_grace_s

        self._pending: dict[str, PendingBatch] = {}
        self._debounce: dict[str, asyncio.TimerHandle] = {}
        self._tails: dict[str, asyncio.Task] = {}
        self._inflight: set[asyncio.Task] = set()

        self.total_translated = 0
        self.total_failed = 0
        self.total_skipped = 0

    def pending_langs(self) -> list[str]:
        return sorted(self._pending)

    def pending_batch(self, lang: str) -> PendingBatch | None:
        return self._pending.get(lang)

    def admit(
        self,
        lang: str,
        text: str,
        seq: int | float | None = None,
        ts: int | float | None = None,
    ) -> bool:
        """Queue one fragment. Returns False when nobody listens to ``lang``."""
        if not self.router.has_receiver(lang):
            return False

        loop = asyncio.get_running_loop()
        batch = self._pending.get(lang)
        if batch is None:
            batch = PendingBatch(
                lang=lang,
                fragments=[text],
                seq=seq,
                ts=ts if ts is not None else _now_ms(),
                started_at=loop.time(),
            )
            batch.max_wait = loop.call_later(self.max_wait_s, self.flush, lang)
            self._pending[lang] = batch
        else:
            batch.fragments.append(text)
            if seq is not None:
                batch.seq = seq

        previous = self._debounce.pop(lang, None)
        if previous is not None:
            previous.cancel()
        self._debounce[lang] = loop.call_later(self.debounce_s, self.flush, lang)
        return True

    def flush(self, lang: str) -> asyncio.Task | None:
        batch = self._pending.pop(lang, None)
        debounce = self._debounce.pop(lang, None)
        if debounce is not None:
            debounce.cancel()
        if batch is None:
            return None
        if batch.max_wait is not None:
            batch.max_wait.cancel()
            batch.max_wait = None

        if not self.router.has_receiver(lang):
            self.total_skipped += 1
            logger.info(
                "dropping %s batch of %s fragment(s): no subscribers left",
                lang,
                len(batch.fragments),
            )
            return None

        previous = self._tails.get(lang)
        task = asyncio.get_running_loop().create_task(self._translate_and_deliver(batch, previous))
        self._tails[lang] = task
        self._inflight.add(task)
        task.add_done_callback(partial(self._on_flush_done, lang))
        return task

    def _on_flush_done(self, lang: str, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if self._tails.get(lang) is task:
            del self._tails[lang]

    async def _translate_and_deliver(
        self,
        batch: PendingBatch,
        previous: asyncio.Task | None,
    ) -> int:
        loop = asyncio.get_running_loop()
        source = batch.source_text
        wait_ms = (loop.time() - batch.started_at) * 1000.0
        started = time.perf_counter()
        translated: str | None = None
        try:
            translated = await self.translator.translate(source, batch.lang)
        except Exception as exc:
            logger.warning(
                "translation failed for %s (seq=%s, %s chars), batch dropped: %s",
                batch.lang,
                batch.seq,
                len(source),
                exc,
            )
        latency_ms = (time.perf_counter() - started) * 1000.0

        # keep per-language delivery in admission order
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        if not translated:
            if translated is not None:
                logger.warning(
                    "translation for %s (seq=%s) came back empty, batch dropped",
                    batch.lang,
                    batch.seq,
                )
            self.total_failed += 1
            await self._record(batch, latency_ms, wait_ms, len(source), failed=True)
            return 0

        self.total_translated += 1
        self.session_log.append(
            SessionLogEntry(
                lang=batch.lang,
                seq=batch.seq,
                latency_ms=int(round(latency_ms)),
                source_text=source,
                translated_text=translated,
            )
        )
        delivered = self.router.broadcast(
            batch.lang,
            "chunk",
            {"text": translated, "ts": batch.ts, "seq": batch.seq},
        )
        logger.info(
            "flushed %s batch seq=%s (%s fragment(s), %.0f ms) to %s subscriber(s)",
            batch.lang,
            batch.seq,
            len(batch.fragments),
            latency_ms,
            delivered,
        )
        await self._record(batch, latency_ms, wait_ms, len(source), failed=False)
        return delivered

    async def _record(
        self,
        batch: PendingBatch,
        latency_ms: float,
        wait_ms: float,
        chars: int,
        *,
        failed: bool,
    ) -> None:
        if self.metrics is None:
            return
        sample = self.metrics.record(
            lang=batch.lang,
            latency_ms=latency_ms,
            wait_ms=wait_ms,
            chars=chars,
            failed=failed,
        )
        try:
            await run_in_threadpool(self.metrics.write_sample, sample)
        except OSError as exc:
            logger.warning("failed to write translation metrics: %s", exc)

    async def close(self) -> None:
        for handle in self._debounce.values():
            handle.cancel()
        for batch in self._pending.values():
            if batch.max_wait is not None:
                batch.max_wait.cancel()
        if self._pending:
            logger.info("shutdown: discarding pending batches for %s", ", ".join(self.pending_langs()))
        self._debounce.clear()
        self._pending.clear()

        inflight = set(self._inflight)
        if not inflight:
            return
        _, still_running = await asyncio.wait(inflight, timeout=self.shutdown_grace_s)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("shutdown: cancelled %s in-flight translation(s)", len(still_running))

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
import json
import threading
from typing import Any

import numpy as np

from guidecast.backend.types import TranslationMetrics


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@dataclass
class SlidingTranslationMetrics:
    buffer_size: int
    log_path: Path
    latency_values: deque[float] = field(init=False)
    wait_values: deque[float] = field(init=False)
    failed: int = 0
    total: int = 0
    _write_lock: threading.Lock = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._write_lock = threading.Lock()
        self.latency_values = deque(maxlen=self.buffer_size)
        self.wait_values = deque(maxlen=self.buffer_size)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def _percentile(self, values: deque[float], p: float) -> float:
        if not values:
            return 0.0
        return float(np.percentile(np.array(values, dtype=np.float32), p))

    def record(
        self,
        *,
        lang: str,
        latency_ms: float,
        wait_ms: float,
        chars: int,
        failed: bool = False,
    ) -> dict[str, Any]:
        """Fold one sample into the window and return its log line.

        Only touches memory, so it is safe on the event loop; persist the
        returned sample with ``write_sample`` off the loop.
        """
        self.total += 1
        if failed:
            self.failed += 1
        else:
            self.latency_values.append(float(latency_ms))
        self.wait_values.append(float(wait_ms))

        return {
            "ts": _utc_now(),
            "lang": lang,
            "latency_ms": round(float(latency_ms), 1),
            "wait_ms": round(float(wait_ms), 1),
            "chars": chars,
            "failed": failed,
        }

    def write_sample(self, sample: dict[str, Any]) -> None:
        line = json.dumps(sample, ensure_ascii=True) + "\n"
        with self._write_lock, self.log_path.open("a", encoding="utf-8") as f:
            f.write(line)

    def snapshot(self) -> TranslationMetrics:
        failure_rate = (self.failed / self.total) if self.total > 0 else 0.0
        return TranslationMetrics(
            p50_latency_ms=self._percentile(self.latency_values, 50),
            p95_latency_ms=self._percentile(self.latency_values, 95),
            p50_wait_ms=self._percentile(self.wait_values, 50),
            p95_wait_ms=self._percentile(self.wait_values, 95),
            failure_rate=failure_rate,
            sample_count=self.total,
            updated_at=_utc_now(),
        )

    def reset(self, clear_log: bool = False) -> None:
        self.latency_values.clear()
        self.wait_values.clear()
        self.failed = 0
        self.total = 0
        if clear_log:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with self._write_lock:
                self.log_path.write_text("", encoding="utf-8")

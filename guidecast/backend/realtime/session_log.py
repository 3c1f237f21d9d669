from __future__ import annotations

import csv
import io
from collections import deque

from guidecast.backend.types import SessionLogEntry

CSV_COLUMNS = ("timestamp", "lang", "seq", "latency_ms", "source_text", "translated_text")


class SessionLog:
    """Append-only record of flushed translations, oldest evicted first."""

    def __init__(self, max_entries: int = 1000) -> None:
        self.max_entries = max_entries
        self._entries: deque[SessionLogEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: SessionLogEntry) -> None:
        self._entries.append(entry)

    def entries(self) -> list[SessionLogEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def to_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for entry in self._entries:
            writer.writerow(
                [
                    entry.timestamp,
                    entry.lang,
                    "" if entry.seq is None else entry.seq,
                    entry.latency_ms,
                    entry.source_text,
                    entry.translated_text,
                ]
            )
        return buf.getvalue()

from __future__ import annotations

import csv
import io

from guidecast.backend.realtime.session_log import CSV_COLUMNS, SessionLog
from guidecast.backend.types import SessionLogEntry


def _entry(i: int, **kw) -> SessionLogEntry:
    values = {
        "lang": "en",
        "seq": i,
        "latency_ms": 100 + i,
        "source_text": f"fonte {i}",
        "translated_text": f"source {i}",
    }
    values.update(kw)
    return SessionLogEntry(**values)


def test_session_log_evicts_oldest_first():
    log = SessionLog(max_entries=1000)
    for i in range(1, 1002):
        log.append(_entry(i))
    entries = log.entries()
    assert len(log) == 1000
    assert entries[0].seq == 2
    assert entries[-1].seq == 1001


def test_session_log_csv_quotes_text_fields():
    log = SessionLog(max_entries=10)
    log.append(_entry(1, source_text='Lui disse "ciao", poi', translated_text="He said, hi"))
    log.append(_entry(2, seq=None))
    text = log.to_csv()

    lines = text.splitlines()
    assert lines[0] == ",".join(f'"{c}"' for c in CSV_COLUMNS)
    assert '"Lui disse ""ciao"", poi"' in lines[1]
    assert '"He said, hi"' in lines[1]

    rows = list(csv.reader(io.StringIO(text)))
    assert rows[1][1] == "en"
    assert rows[1][4] == 'Lui disse "ciao", poi'
    assert rows[2][2] == ""


def test_session_log_clear():
    log = SessionLog(max_entries=3)
    log.append(_entry(1))
    log.clear()
    assert len(log) == 0
    assert log.to_csv().count("\n") == 1

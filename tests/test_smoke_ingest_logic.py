from __future__ import annotations

import importlib.util
from pathlib import Path


def _load_smoke_module():
    root = Path(__file__).resolve().parents[1]
    path = root / "scripts" / "smoke_ingest.py"
    spec = importlib.util.spec_from_file_location("smoke_ingest_module", path)
    if spec is None or spec.loader is None:
        raise RuntimeError("failed to load smoke_ingest.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_resolve_status_unverified_when_samples_insufficient():
    m = _load_smoke_module()
    assert m.resolve_status(received=2, min_samples=3, latency_gate_pass=True) == "UNVERIFIED"


def test_resolve_status_pass_and_fail():
    m = _load_smoke_module()
    assert m.resolve_status(received=3, min_samples=3, latency_gate_pass=True) == "PASS"
    assert m.resolve_status(received=3, min_samples=3, latency_gate_pass=False) == "FAIL"


def test_check_gate():
    m = _load_smoke_module()
    gate = m.check_gate([100.0, 200.0, 300.0], sent=4, target_p95_ms=250.0)
    assert gate["received"] == 3
    assert gate["sent"] == 4
    assert gate["p95_delivery_ms"] == 300.0
    assert gate["p50_delivery_ms"] == 200.0
    assert gate["latency_gate_pass"] is False
    assert m.check_gate([], sent=2, target_p95_ms=250.0)["latency_gate_pass"] is False


def test_parse_sse_block():
    m = _load_smoke_module()
    event = m.parse_sse_block(["id: 12", "event: chunk", 'data: {"text":"hi","seq":1}'])
    assert event == {"id": 12, "event": "chunk", "data": {"text": "hi", "seq": 1}}
    assert m.parse_sse_block([": comment"]) is None


def test_percentile_reports_an_observed_sample():
    m = _load_smoke_module()
    samples = [120.0, 80.0, 95.0, 410.0, 101.0]
    assert m.percentile(samples, 95) == 410.0
    assert m.percentile(samples, 50) == 101.0
    assert m.percentile([], 95) == 0.0

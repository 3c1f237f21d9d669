from __future__ import annotations

import argparse
import json
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from urllib import error, request

import numpy as np


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def http_json(
    method: str,
    url: str,
    payload: dict | None = None,
    timeout: float = 15.0,
) -> dict:
    body = None
    headers: dict[str, str] = {}
    if payload is not None:
        body = json.dumps(payload, ensure_ascii=True).encode("utf-8")
        headers["Content-Type"] = "application/json"

    req = request.Request(url=url, data=body, headers=headers, method=method)
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
            if not raw.strip():
                return {}
            return json.loads(raw)
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"{method} {url} -> {exc.code}: {detail}") from exc
    except error.URLError as exc:
        raise RuntimeError(f"{method} {url} -> network error: {exc}") from exc


def parse_sse_block(lines: list[str]) -> dict | None:
    """Turn the lines of one SSE block into ``{id, event, data}``."""
    event: dict = {"id": None, "event": "message", "data": None}
    data_lines: list[str] = []
    for line in lines:
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "id":
            event["id"] = int(value) if value.isdigit() else value
        elif name == "event":
            event["event"] = value
        elif name == "data":
            data_lines.append(value)
    if not data_lines:
        return None
    raw = "\n".join(data_lines)
    try:
        event["data"] = json.loads(raw)
    except json.JSONDecodeError:
        event["data"] = raw
    return event


def percentile(values: list[float], p: float) -> float:
    if not values:
        return 0.0
    # "higher" never reports a latency below an observed sample
    return float(np.percentile(np.asarray(values, dtype=np.float64), p, method="higher"))


def check_gate(latencies_ms: list[float], sent: int, target_p95_ms: float) -> dict:
    received = len(latencies_ms)
    p95 = percentile(latencies_ms, 95)
    return {
        "sent": sent,
        "received": received,
        "p50_delivery_ms": percentile(latencies_ms, 50),
        "p95_delivery_ms": p95,
        "latency_gate_pass": received > 0 and p95 <= target_p95_ms,
    }


def resolve_status(*, received: int, min_samples: int, latency_gate_pass: bool) -> str:
    if received < min_samples:
        return "UNVERIFIED"
    if latency_gate_pass:
        return "PASS"
    return "FAIL"


class _ChunkListener(threading.Thread):
    def __init__(self, url: str) -> None:
        super().__init__(daemon=True)
        self.url = url
        self.ready = threading.Event()
        self.chunks: list[tuple[float, dict]] = []
        self.error: str | None = None

    def run(self) -> None:
        try:
            with request.urlopen(self.url, timeout=60.0) as resp:
                block: list[str] = []
                for raw in resp:
                    line = raw.decode("utf-8").rstrip("\r\n")
                    if line:
                        block.append(line)
                        continue
                    event = parse_sse_block(block)
                    block = []
                    if event is None:
                        continue
                    if event["event"] == "hello":
                        self.ready.set()
                    elif event["event"] == "chunk":
                        self.chunks.append((time.time(), event["data"]))
        except Exception as exc:
            self.error = str(exc)
            self.ready.set()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest/broadcast smoke test and latency gate")
    parser.add_argument("--base-url", default="http://127.0.0.1:8787")
    parser.add_argument("--lang", default="en")
    parser.add_argument("--fragments", type=int, default=6)
    parser.add_argument("--gap-ms", type=float, default=400.0)
    parser.add_argument("--text", default="Buongiorno a tutti")
    parser.add_argument("--settle-seconds", type=float, default=8.0)
    parser.add_argument("--target-p95-ms", type=float, default=2500.0)
    parser.add_argument("--min-samples", type=int, default=3)
    parser.add_argument("--strict", action="store_true", default=False)
    parser.add_argument("--report-json", default="")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    base_url = args.base_url.rstrip("/")

    def event(text: str) -> None:
        print(f"[{_now()}] {text}")

    try:
        health = http_json("GET", f"{base_url}/health")
        event(f"health: status={health.get('status')} fake_mode={health.get('fake_mode')}")

        listener = _ChunkListener(f"{base_url}/api/subscribe?lang={args.lang}")
        listener.start()
        if not listener.ready.wait(timeout=10.0) or listener.error:
            raise RuntimeError(f"subscribe failed: {listener.error or 'no hello event'}")
        event(f"subscribed to {args.lang}")

        sent_at: dict[int, float] = {}
        for seq in range(1, max(1, args.fragments) + 1):
            sent_at[seq] = time.time()
            resp = http_json(
                "POST",
                f"{base_url}/api/ingest",
                {"sourceText": f"{args.text} ({seq})", "lang": args.lang, "seq": seq},
            )
            if not resp.get("accepted"):
                event(f"fragment {seq} not queued: {resp}")
            time.sleep(max(args.gap_ms, 0.0) / 1000.0)

        deadline = time.time() + max(args.settle_seconds, 0.5)
        while time.time() < deadline and len(listener.chunks) < len(sent_at):
            time.sleep(0.2)

        latencies = []
        for received_at, data in listener.chunks:
            seq = data.get("seq") if isinstance(data, dict) else None
            if isinstance(seq, (int, float)) and int(seq) in sent_at:
                latencies.append((received_at - sent_at[int(seq)]) * 1000.0)

        gate = check_gate(latencies, sent=len(sent_at), target_p95_ms=args.target_p95_ms)
        status = resolve_status(
            received=gate["received"],
            min_samples=args.min_samples,
            latency_gate_pass=gate["latency_gate_pass"],
        )
        server_status = http_json("GET", f"{base_url}/api/status")
        summary = {
            "base_url": base_url,
            "lang": args.lang,
            "status": status,
            "gate": gate,
            "server": server_status,
            "strict": bool(args.strict),
        }
        print(json.dumps(summary, ensure_ascii=False, indent=2))
        if args.report_json:
            report_path = Path(args.report_json)
            report_path.parent.mkdir(parents=True, exist_ok=True)
            report_path.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")
            event(f"report written: {report_path}")

        if status == "UNVERIFIED":
            event("result: UNVERIFIED (insufficient samples)")
            return 1 if args.strict else 0
        if status == "PASS":
            event("result: PASS")
            return 0
        event("result: FAIL")
        return 1 if args.strict else 0
    except Exception as exc:
        print(f"smoke failed: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())

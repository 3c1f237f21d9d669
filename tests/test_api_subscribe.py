from __future__ import annotations

import asyncio
import importlib
import json

import pytest


def _load_main(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.setenv("GC_FAKE_MODE", "1")
    monkeypatch.setenv("GC_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("GC_FRONTEND_DIR", str(tmp_path / "no-frontend"))
    monkeypatch.delenv("GC_SUPPORTED_LANGS", raising=False)
    module = importlib.import_module("guidecast.backend.main")
    return importlib.reload(module)


def _parse(payload: str) -> tuple[str, dict]:
    fields = dict(line.split(": ", 1) for line in payload.strip().splitlines())
    return fields["event"], json.loads(fields["data"])


def test_subscribe_rejects_unsupported_language(monkeypatch, tmp_path):
    testclient_mod = pytest.importorskip("fastapi.testclient")
    TestClient = testclient_mod.TestClient
    module = _load_main(monkeypatch, tmp_path)

    with TestClient(module.app) as client:
        missing = client.get("/api/subscribe")
        assert missing.status_code == 400
        assert missing.json() == {"ok": False, "error": "lang is required"}

        unknown = client.get("/api/subscribe", params={"lang": "tlh"})
        assert unknown.status_code == 400
        assert "unsupported" in unknown.json()["error"]


def test_visitor_settings_clamp_and_replay(monkeypatch, tmp_path):
    testclient_mod = pytest.importorskip("fastapi.testclient")
    TestClient = testclient_mod.TestClient
    module = _load_main(monkeypatch, tmp_path)

    with TestClient(module.app) as client:
        resp = client.post("/api/visitor-settings", json={"lang": "it", "ttsRate": 3.0})
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "sent": 0, "ttsRate": 2.0}

        sub = client.portal.call(module.router.subscribe, "it")
        resp = client.post("/api/visitor-settings", json={"lang": "it", "ttsRate": 0.2})
        assert resp.json()["sent"] == 1

        def _take():
            out = []
            while not sub.queue.empty():
                out.append(_parse(sub.queue.get_nowait()))
            return out

        events = client.portal.call(_take)
        assert events[0][0] == "hello"
        assert events[1] == ("settings", {"ttsRate": 2.0})
        assert events[2] == ("settings", {"ttsRate": 0.5})

        bad = client.post("/api/visitor-settings", json={"lang": "it"})
        assert bad.status_code == 400
        assert bad.json()["ok"] is False


def test_event_stream_yields_events_and_unsubscribes(monkeypatch, tmp_path):
    module = _load_main(monkeypatch, tmp_path)

    async def scenario():
        sub = module.router.subscribe("en")
        stream = module._event_stream(sub)
        first = await stream.__anext__()
        module.router.broadcast("en", "chunk", {"text": "hi", "ts": 1, "seq": 1})
        second = await stream.__anext__()
        assert module.registry.count("en") == 1
        await stream.aclose()
        return sub, first, second

    sub, first, second = asyncio.run(scenario())
    assert _parse(first) == ("hello", {"lang": "en", "clientId": sub.client_id})
    assert _parse(second) == ("chunk", {"text": "hi", "ts": 1, "seq": 1})
    assert module.registry.count() == 0


def test_event_stream_ends_when_subscriber_is_pruned(monkeypatch, tmp_path):
    module = _load_main(monkeypatch, tmp_path)

    async def scenario():
        sub = module.router.subscribe("en")
        stream = module._event_stream(sub)
        await stream.__anext__()
        module.router.unsubscribe(sub.client_id)
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()

    asyncio.run(scenario())
    assert module.registry.count() == 0


def test_health_and_status(monkeypatch, tmp_path):
    testclient_mod = pytest.importorskip("fastapi.testclient")
    TestClient = testclient_mod.TestClient
    module = _load_main(monkeypatch, tmp_path)

    with TestClient(module.app) as client:
        health = client.get("/health")
        assert health.status_code == 200
        assert health.json() == {"status": "ok", "fake_mode": True}

        status = client.get("/api/status").json()
        for key in (
            "clients",
            "byLang",
            "uptime",
            "totalChunksTranslated",
            "sessionLogEntries",
            "pendingLangs",
        ):
            assert key in status
        assert status["clients"] == 0
        assert status["uptime"] >= 0
        assert status["translationMetrics"]["sampleCount"] == 0

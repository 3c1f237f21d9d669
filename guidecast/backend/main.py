from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles

from guidecast.backend.config import AppConfig
from guidecast.backend.errors import ClientInputError
from guidecast.backend.realtime.batcher import BatchEngine
from guidecast.backend.realtime.broadcast import BroadcastRouter
from guidecast.backend.realtime.metrics import SlidingTranslationMetrics
from guidecast.backend.realtime.session_log import SessionLog
from guidecast.backend.realtime.settings_store import PresetStore, VisitorSettingsStore
from guidecast.backend.realtime.subscribers import Subscriber, SubscriberRegistry
from guidecast.backend.services.translator import build_translator
from guidecast.backend.types import (
    ErrorResponse,
    HealthResponse,
    IngestRequest,
    IngestResponse,
    PresetSuggestRequest,
    SessionLogResponse,
    StatusResponse,
    VisitorSettingsRequest,
    VisitorSettingsResponse,
)
from guidecast.backend.validation import validate_ingest, validate_lang, validate_preset

logger = logging.getLogger("guidecast")
logging.basicConfig(level=logging.INFO)

config = AppConfig.from_env()
config.ensure_paths()
registry = SubscriberRegistry(queue_size=config.subscriber_queue_size)
visitor_settings = VisitorSettingsStore()
presets = PresetStore()
session_log = SessionLog(max_entries=config.session_log_size)
metrics = SlidingTranslationMetrics(
    buffer_size=config.metrics_buffer_size,
    log_path=config.logs_dir / "translation_metrics.ndjson",
)
router = BroadcastRouter(registry, visitor_settings, heartbeat_ms=config.heartbeat_ms)
translator = build_translator(config)
engine = BatchEngine(config, translator, router, session_log, metrics)

_started_at = time.monotonic()


@asynccontextmanager
async def lifespan(_: FastAPI):
    global _started_at
    _started_at = time.monotonic()
    logger.info(
        "guidecast ready: langs=%s debounce=%sms max_wait=%sms fake_mode=%s",
        ",".join(config.supported_langs),
        config.debounce_ms,
        config.max_wait_ms,
        config.fake_mode,
    )
    yield
    await engine.close()
    router.close()


app = FastAPI(title="Guidecast", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ClientInputError)
async def client_input_error(_: Request, exc: ClientInputError) -> JSONResponse:
    return JSONResponse(status_code=400, content=ErrorResponse(error=str(exc)).model_dump())


@app.exception_handler(RequestValidationError)
async def request_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    msg = str(first.get("msg", "invalid request"))
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error=f"{loc}: {msg}" if loc else msg).model_dump(),
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", fake_mode=config.fake_mode)


@app.post("/api/ingest", response_model=IngestResponse)
async def ingest(req: IngestRequest) -> IngestResponse:
    fragment = validate_ingest(req, config)
    has_receiver = router.has_receiver(fragment.lang)
    accepted = engine.admit(fragment.lang, fragment.text, seq=fragment.seq, ts=fragment.ts)
    return IngestResponse(
        has_receiver=has_receiver,
        client_count=router.client_count(fragment.lang),
        accepted=accepted,
        suggested_preset=presets.get(fragment.lang),
    )


async def _event_stream(sub: Subscriber) -> AsyncIterator[str]:
    try:
        while True:
            payload = await sub.next_event()
            if payload is None:
                break
            yield payload
    finally:
        router.unsubscribe(sub.client_id)


@app.get("/api/subscribe")
async def subscribe(request: Request, lang: str | None = None) -> StreamingResponse:
    code = validate_lang(lang, config)
    last_event_id = request.headers.get("last-event-id")
    if last_event_id:
        logger.info("subscriber for %s reconnected after event %s; no replay", code, last_event_id)
    sub = router.subscribe(code)
    return StreamingResponse(
        _event_stream(sub),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.post("/api/visitor-settings", response_model=VisitorSettingsResponse)
async def update_visitor_settings(req: VisitorSettingsRequest) -> VisitorSettingsResponse:
    lang = validate_lang(req.lang, config)
    if req.tts_rate is None:
        raise ClientInputError("ttsRate is required")
    settings = visitor_settings.update(lang, req.tts_rate)
    sent = router.broadcast(lang, "settings", settings.to_event())
    return VisitorSettingsResponse(sent=sent, tts_rate=settings.tts_rate)


@app.post("/api/preset-suggest")
async def preset_suggest(req: PresetSuggestRequest):
    lang = validate_lang(req.lang, config)
    presets.suggest(lang, validate_preset(req.preset))
    return {"ok": True}


@app.get("/api/status", response_model=StatusResponse)
async def status() -> StatusResponse:
    return StatusResponse(
        clients=router.client_count(),
        by_lang=registry.by_lang(),
        uptime=round(time.monotonic() - _started_at, 3),
        total_chunks_translated=engine.total_translated,
        session_log_entries=len(session_log),
        pending_langs=engine.pending_langs(),
        failed_batches=engine.total_failed,
        skipped_batches=engine.total_skipped,
        translation_metrics=metrics.snapshot(),
    )


@app.get("/api/session-log", response_model=SessionLogResponse)
async def session_log_json() -> SessionLogResponse:
    entries = session_log.entries()
    return SessionLogResponse(count=len(entries), entries=entries)


@app.get("/api/session-log/csv")
async def session_log_csv() -> Response:
    return Response(
        content=session_log.to_csv(),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="session-log.csv"'},
    )


if config.frontend_dir.is_dir():
    app.mount("/", StaticFiles(directory=str(config.frontend_dir), html=True), name="static")

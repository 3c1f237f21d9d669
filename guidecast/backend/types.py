from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    status: str = "ok"
    fake_mode: bool = False


class IngestRequest(_CamelModel):
    source_text: str | None = None
    lang: str | None = None
    seq: int | float | None = None
    ts: int | float | None = None


class IngestResponse(_CamelModel):
    ok: bool = True
    has_receiver: bool
    client_count: int
    accepted: bool
    suggested_preset: str | None = None


class VisitorSettingsRequest(_CamelModel):
    lang: str | None = None
    tts_rate: float | None = None


class VisitorSettingsResponse(_CamelModel):
    ok: bool = True
    sent: int
    tts_rate: float


class PresetSuggestRequest(_CamelModel):
    lang: str | None = None
    preset: str | None = None


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str


class TranslationMetrics(_CamelModel):
    p50_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p50_wait_ms: float = 0.0
    p95_wait_ms: float = 0.0
    failure_rate: float = 0.0
    sample_count: int = 0
    updated_at: str = Field(default_factory=utc_now_iso)


class StatusResponse(_CamelModel):
    clients: int
    by_lang: dict[str, int]
    uptime: float
    total_chunks_translated: int
    session_log_entries: int
    pending_langs: list[str]
    failed_batches: int = 0
    skipped_batches: int = 0
    translation_metrics: TranslationMetrics


class SessionLogEntry(_CamelModel):
    timestamp: str = Field(default_factory=utc_now_iso)
    lang: str
    seq: int | float | None = None
    latency_ms: int
    source_text: str
    translated_text: str


class SessionLogResponse(_CamelModel):
    count: int
    entries: list[SessionLogEntry]

from __future__ import annotations

import math
from dataclasses import dataclass

from guidecast.backend.config import AppConfig
from guidecast.backend.errors import ClientInputError
from guidecast.backend.types import IngestRequest

MAX_PRESET_CHARS = 64


@dataclass(frozen=True, slots=True)
class Fragment:
    lang: str
    text: str
    seq: int | float | None
    ts: int | float | None


def validate_lang(value: str | None, config: AppConfig) -> str:
    lang = str(value or "").strip().lower()
    if not lang:
        raise ClientInputError("lang is required")
    if not config.is_supported_lang(lang):
        raise ClientInputError(f"unsupported lang: {lang}")
    return lang


def _validate_number(name: str, value: int | float | None) -> int | float | None:
    if value is None:
        return None
    if isinstance(value, bool) or value < 0:
        raise ClientInputError(f"{name} must be a non-negative number")
    # ints are arbitrary precision and always finite
    if isinstance(value, float) and not math.isfinite(value):
        raise ClientInputError(f"{name} must be a non-negative number")
    return value


def _require_utf8(name: str, text: str) -> str:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ClientInputError(f"{name} is not valid UTF-8") from exc
    return text


def validate_ingest(req: IngestRequest, config: AppConfig) -> Fragment:
    """Check one producer fragment; raises ClientInputError without side effects."""
    if req.source_text is None:
        raise ClientInputError("sourceText is required")
    text = req.source_text.strip()
    if not text:
        raise ClientInputError("sourceText is empty")
    if len(text) > config.max_fragment_chars:
        raise ClientInputError(
            f"sourceText too long ({len(text)} > {config.max_fragment_chars} chars)"
        )
    _require_utf8("sourceText", text)
    lang = validate_lang(req.lang, config)
    seq = _validate_number("seq", req.seq)
    ts = _validate_number("ts", req.ts)
    return Fragment(lang=lang, text=text, seq=seq, ts=ts)


def validate_preset(value: str | None) -> str:
    preset = str(value or "").strip()
    if not preset:
        raise ClientInputError("preset is required")
    if len(preset) > MAX_PRESET_CHARS:
        raise ClientInputError(f"preset too long (max {MAX_PRESET_CHARS} chars)")
    return _require_utf8("preset", preset)

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_LANGS = ("en", "it", "es", "fr", "de", "pt", "zh", "ja", "ko", "ar", "ru")


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_langs(value: str | None) -> tuple[str, ...]:
    if value is None or not value.strip():
        return DEFAULT_LANGS
    langs = [item.strip().lower() for item in value.split(",")]
    return tuple(dict.fromkeys(lang for lang in langs if lang))


@dataclass(slots=True)
class AppConfig:
    data_dir: Path
    logs_dir: Path
    frontend_dir: Path

    fake_mode: bool
    supported_langs: tuple[str, ...]
    max_fragment_chars: int

    debounce_ms: int
    max_wait_ms: int
    heartbeat_ms: int
    session_log_size: int
    subscriber_queue_size: int
    metrics_buffer_size: int
    shutdown_grace_s: float

    translate_api_base: str
    translate_api_key: str
    translate_model: str
    translate_timeout_s: float
    translate_temperature: float
    translate_max_tokens: int

    @classmethod
    def from_env(cls) -> "AppConfig":
        root = Path(os.getenv("GC_DATA_DIR", "data")).resolve()
        frontend = Path(os.getenv("GC_FRONTEND_DIR", "public")).resolve()
        return cls(
            data_dir=root,
            logs_dir=root / "logs",
            frontend_dir=frontend,
            fake_mode=_as_bool(os.getenv("GC_FAKE_MODE"), default=False),
            supported_langs=_as_langs(os.getenv("GC_SUPPORTED_LANGS")),
            max_fragment_chars=max(1, int(os.getenv("GC_MAX_FRAGMENT_CHARS", "1000"))),
            debounce_ms=max(1, int(os.getenv("GC_DEBOUNCE_MS", "50"))),
            max_wait_ms=max(1, int(os.getenv("GC_MAX_WAIT_MS", "3000"))),
            heartbeat_ms=max(100, int(os.getenv("GC_HEARTBEAT_MS", "15000"))),
            session_log_size=max(1, int(os.getenv("GC_SESSION_LOG_SIZE", "1000"))),
            subscriber_queue_size=max(
                1, int(os.getenv("GC_SUBSCRIBER_QUEUE_SIZE", "256"))
            ),
            metrics_buffer_size=int(os.getenv("GC_METRICS_BUFFER_SIZE", "400")),
            shutdown_grace_s=max(0.0, float(os.getenv("GC_SHUTDOWN_GRACE_S", "5"))),
            translate_api_base=os.getenv(
                "GC_TRANSLATE_API_BASE",
                "https://api.openai.com/v1",
            ),
            translate_api_key=os.getenv(
                "GC_TRANSLATE_API_KEY",
                os.getenv("OPENAI_API_KEY", ""),
            ),
            translate_model=os.getenv("GC_TRANSLATE_MODEL", "gpt-4o-mini"),
            translate_timeout_s=float(os.getenv("GC_TRANSLATE_TIMEOUT_S", "12")),
            translate_temperature=float(os.getenv("GC_TRANSLATE_TEMPERATURE", "0.3")),
            translate_max_tokens=max(
                16, int(os.getenv("GC_TRANSLATE_MAX_TOKENS", "500"))
            ),
        )

    def ensure_paths(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def is_supported_lang(self, lang: str) -> bool:
        return lang in self.supported_langs

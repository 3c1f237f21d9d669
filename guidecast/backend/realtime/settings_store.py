from __future__ import annotations

import math
from dataclasses import dataclass

from guidecast.backend.errors import ClientInputError

TTS_RATE_MIN = 0.5
TTS_RATE_MAX = 2.0


def clamp_tts_rate(value: float) -> float:
    try:
        rate = float(value)
    except (TypeError, ValueError) as exc:
        raise ClientInputError("ttsRate must be a number") from exc
    if not math.isfinite(rate):
        raise ClientInputError("ttsRate must be a finite number")
    return max(TTS_RATE_MIN, min(TTS_RATE_MAX, rate))


@dataclass(frozen=True, slots=True)
class VisitorSettings:
    tts_rate: float

    def to_event(self) -> dict[str, float]:
        return {"ttsRate": self.tts_rate}


class VisitorSettingsStore:
    """Latest-wins playback hints per language, replayed to late joiners."""

    def __init__(self) -> None:
        self._by_lang: dict[str, VisitorSettings] = {}

    def update(self, lang: str, tts_rate: float) -> VisitorSettings:
        settings = VisitorSettings(tts_rate=clamp_tts_rate(tts_rate))
        self._by_lang[lang] = settings
        return settings

    def get(self, lang: str) -> VisitorSettings | None:
        return self._by_lang.get(lang)

    def snapshot(self) -> dict[str, float]:
        return {lang: item.tts_rate for lang, item in self._by_lang.items()}


class PresetStore:
    def __init__(self) -> None:
        self._by_lang: dict[str, str] = {}

    def suggest(self, lang: str, preset: str) -> None:
        self._by_lang[lang] = preset

    def get(self, lang: str) -> str | None:
        return self._by_lang.get(lang)

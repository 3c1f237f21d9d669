from __future__ import annotations

import json
import logging
from typing import Any, Protocol
import urllib.error
import urllib.request

from fastapi.concurrency import run_in_threadpool

from guidecast.backend.config import AppConfig
from guidecast.backend.errors import TranslationError

logger = logging.getLogger("guidecast.translator")

DEFAULT_API_BASE = "https://api.openai.com/v1"

LANGUAGE_NAMES = {
    "en": "English",
    "it": "Italian",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "pt": "Portuguese",
    "zh": "Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "ar": "Arabic",
    "ru": "Russian",
}


def language_name(lang: str) -> str:
    return LANGUAGE_NAMES.get(lang, lang)


def build_messages(text: str, lang: str) -> list[dict[str, str]]:
    return [
        {
            "role": "system",
            "content": (
                f"You are a professional translator. Translate the user's text to "
                f"{language_name(lang)}. Only return the translation, nothing else. "
                "Preserve the tone and meaning."
            ),
        },
        {"role": "user", "content": text},
    ]


def parse_translation(data: Any) -> str:
    """Pull the translated text out of a chat-completions response body."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise TranslationError("Translation response has no message content.") from exc
    # some compatible servers return content as a list of text parts
    if isinstance(content, list):
        content = "".join(
            part.get("text", "") if isinstance(part, dict) else str(part) for part in content
        )
    if not isinstance(content, str):
        raise TranslationError("Translation response content is not text.")
    return content.strip()


class TranslatorLike(Protocol):
    async def translate(self, text: str, lang: str) -> str: ...


class Translator:
    """Translates one batch per call through an OpenAI-compatible endpoint.

    The HTTP call is blocking and runs on the threadpool, so the event loop
    keeps admitting fragments while a translation is in flight.
    """

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.api_key = str(config.translate_api_key or "").strip()
        base = str(config.translate_api_base or "").strip().rstrip("/") or DEFAULT_API_BASE
        self.endpoint = f"{base}/chat/completions"

    def available(self) -> bool:
        return bool(self.api_key)

    def build_payload(self, text: str, lang: str) -> dict[str, Any]:
        return {
            "model": self.config.translate_model,
            "messages": build_messages(text, lang),
            "stream": False,
            "max_tokens": self.config.translate_max_tokens,
            "temperature": self.config.translate_temperature,
        }

    def _post_json(self, payload: dict[str, Any]) -> Any:
        req = urllib.request.Request(
            self.endpoint,
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with urllib.request.urlopen(req, timeout=self.config.translate_timeout_s) as resp:
                return json.load(resp)
        except urllib.error.HTTPError as exc:
            raise TranslationError(f"Translation HTTP {exc.code}: {exc.reason}") from exc
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise TranslationError(f"Translation request failed: {exc}") from exc
        except ValueError as exc:
            raise TranslationError(f"Translation service returned invalid JSON: {exc}") from exc

    def translate_sync(self, text: str, lang: str) -> str:
        if not self.available():
            raise TranslationError("Translation API key is missing (GC_TRANSLATE_API_KEY).")
        result = parse_translation(self._post_json(self.build_payload(text, lang)))
        if not result:
            raise TranslationError("Translation service returned empty text.")
        return result

    async def translate(self, text: str, lang: str) -> str:
        return await run_in_threadpool(self.translate_sync, text, lang)


class FakeTranslator:
    """Offline stand-in used in fake mode: tags the text with its target language."""

    async def translate(self, text: str, lang: str) -> str:
        return f"[{lang}] {text}"


def build_translator(config: AppConfig) -> TranslatorLike:
    if config.fake_mode:
        logger.info("fake mode: translations are echoed locally")
        return FakeTranslator()
    translator = Translator(config)
    if not translator.available():
        logger.warning("translation API key is not set; every batch will be dropped")
    return translator

from __future__ import annotations

import logging
import os
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Final, Optional

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

SYSTEM_PROMPT: Final[str] = (
    "You are a professional simultaneous interpreter between Japanese and English.\n"
    "- Translate in both directions between Japanese and English.\n"
    "- Drop fillers and redundant expressions.\n"
    "- Keep proper nouns and technical terms exact.\n"
    "- Return short, natural sentences incrementally.\n"
    "- Output only the translation (no preamble, explanation or labels)."
)
LANGUAGE_PAIRS: Final[dict[str, tuple[str, str]]] = {
    "ja": ("Japanese", "English"),
    "en": ("English", "Japanese"),
}
SUPPORTED_LANGUAGES: Final[tuple[str, ...]] = tuple(LANGUAGE_PAIRS)


class TranslationTransportError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def describe_status_error(exc: APIStatusError) -> str:
    body = exc.body
    if isinstance(body, dict):
        envelope = body.get("error", body)
        if isinstance(envelope, dict):
            message = envelope.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
    return f"Translation service returned status {exc.status_code}"


class ResponsesTranslationClient:
    """Opens streaming translation requests against the Responses API.

    ``open_stream`` yields the raw event-stream bytes; decoding is left to
    the caller.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-5-nano",
        fallback_model: Optional[str] = "gpt-4.1-mini",
        verbosity: str = "low",
        reasoning_effort: str = "minimal",
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        if client is None:
            key = api_key or os.getenv("OPENAI_API_KEY")
            if not key:
                raise RuntimeError("OPENAI_API_KEY is required for translation.")
            client = AsyncOpenAI(api_key=key, max_retries=0)
        self._client = client
        self._models = [model]
        if fallback_model and fallback_model not in self._models:
            self._models.append(fallback_model)
        self._active_model_index = 0
        self._verbosity = verbosity
        self._reasoning_effort = reasoning_effort

    @property
    def active_model(self) -> str:
        return self._models[self._active_model_index]

    def build_payload(self, text: str, source_language: str) -> dict[str, Any]:
        source, target = LANGUAGE_PAIRS.get(source_language, LANGUAGE_PAIRS["ja"])
        return {
            "model": self.active_model,
            "instructions": (
                f"{SYSTEM_PROMPT}\n\n"
                f"Task: translate the following {source} into {target}. "
                "Output only the translation, immediately and incrementally."
            ),
            "input": text,
            "stream": True,
            "text": {"verbosity": self._verbosity},
            "reasoning": {"effort": self._reasoning_effort},
        }

    @asynccontextmanager
    async def open_stream(self, text: str, source_language: str) -> AsyncIterator[AsyncIterator[bytes]]:
        async with AsyncExitStack() as stack:
            response = await self._open_response(stack, text, source_language)
            yield response.iter_bytes()

    async def _open_response(self, stack: AsyncExitStack, text: str, source_language: str) -> Any:
        while True:
            payload = self.build_payload(text, source_language)
            try:
                return await stack.enter_async_context(
                    self._client.responses.with_streaming_response.create(**payload)
                )
            except APIStatusError as exc:
                # Promote to fallback model once and keep it for subsequent requests.
                if exc.status_code in (400, 404) and self._active_model_index + 1 < len(self._models):
                    logging.warning(
                        "translation_model_fallback from=%s to=%s status=%d",
                        self.active_model,
                        self._models[self._active_model_index + 1],
                        exc.status_code,
                    )
                    self._active_model_index += 1
                    continue
                raise TranslationTransportError(describe_status_error(exc), exc.status_code) from exc
            except APIConnectionError as exc:
                raise TranslationTransportError(f"Could not reach the translation service: {exc}") from exc

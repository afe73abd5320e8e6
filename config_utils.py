from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable, Optional


def read_str_env(name: str, default: str) -> str:
    raw = (os.getenv(name) or "").strip()
    return raw or default


def read_choice_env(name: str, default: str, choices: Iterable[str]) -> str:
    raw = (os.getenv(name) or "").strip().lower()
    allowed = {choice.lower() for choice in choices}
    return raw if raw in allowed else default


def read_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def read_int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def read_bool_env(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(frozen=True)
class TranslatorSettings:
    api_key: Optional[str]
    model: str
    fallback_model: str
    verbosity: str
    reasoning_effort: str
    request_timeout_s: Optional[float]
    settings_path: Optional[str]
    mic_device: Optional[str]

    @classmethod
    def from_env(cls) -> "TranslatorSettings":
        timeout = read_float_env("TRANSLATION_REQUEST_TIMEOUT_SECONDS", 0.0)
        return cls(
            api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
            model=read_str_env("TRANSLATION_MODEL", "gpt-5-nano"),
            fallback_model=read_str_env("TRANSLATION_FALLBACK_MODEL", "gpt-4.1-mini"),
            verbosity=read_choice_env("TRANSLATION_VERBOSITY", "low", ("low", "medium", "high")),
            reasoning_effort=read_choice_env(
                "TRANSLATION_REASONING_EFFORT",
                "minimal",
                ("minimal", "low", "medium", "high"),
            ),
            request_timeout_s=timeout if timeout > 0 else None,
            settings_path=(
                read_str_env("SETTINGS_PATH", "./state/translator_settings.json")
                if read_bool_env("PERSIST_SETTINGS", True)
                else None
            ),
            mic_device=(os.getenv("MIC_DEVICE") or "").strip() or None,
        )

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Final, Optional

DEBOUNCE_RANGE_MS: Final[tuple[int, int]] = (50, 2000)
SAMPLE_RANGE_MS: Final[tuple[float, float]] = (0.0, 60000.0)
MAX_STORED_SAMPLES: Final[int] = 100
FONT_SIZES: Final[tuple[str, ...]] = ("small", "medium", "large", "xlarge")
DEFAULT_FONT_SIZE: Final[str] = "medium"


@dataclass
class OnboardingState:
    completed: bool = False
    dont_show_again: bool = False
    skip_count: int = 0

    @property
    def should_show(self) -> bool:
        return not (self.completed or self.dont_show_again)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SettingsStore:
    """Persisted key-value state backed by a single JSON file.

    Values are validated on every read; anything with the wrong type or out
    of range is dropped in favor of the caller's default. With ``path=None``
    the store lives in memory only.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = Path(path) if path else None
        self._data: dict[str, Any] = {}
        self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def debounce_delay(self, language: str) -> Optional[int]:
        value = self._section("debounce_delay_ms").get(language)
        if value is None:
            return None
        low, high = DEBOUNCE_RANGE_MS
        if not _is_number(value) or not (low <= value <= high):
            logging.warning("settings_invalid_debounce language=%s value=%r", language, value)
            self._section("debounce_delay_ms").pop(language, None)
            return None
        return int(value)

    def set_debounce_delay(self, language: str, delay_ms: int) -> None:
        self._section("debounce_delay_ms")[language] = int(delay_ms)
        self._flush()

    def latency_samples(self, language: str) -> list[dict[str, float]]:
        raw = self._section("latency_samples").get(language)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logging.warning("settings_invalid_samples language=%s type=%s", language, type(raw).__name__)
            self._section("latency_samples").pop(language, None)
            return []
        low, high = SAMPLE_RANGE_MS
        valid: list[dict[str, float]] = []
        dropped = 0
        for entry in raw:
            if not isinstance(entry, dict):
                dropped += 1
                continue
            delay = entry.get("delay_ms")
            timestamp = entry.get("timestamp")
            if not _is_number(delay) or not (low <= delay <= high) or not _is_number(timestamp):
                dropped += 1
                continue
            valid.append({"delay_ms": float(delay), "timestamp": float(timestamp)})
        if dropped:
            logging.warning("settings_dropped_samples language=%s dropped=%d", language, dropped)
        return valid[-MAX_STORED_SAMPLES:]

    def set_latency_samples(self, language: str, samples: list[dict[str, float]]) -> None:
        self._section("latency_samples")[language] = list(samples)[-MAX_STORED_SAMPLES:]
        self._flush()

    def onboarding_state(self) -> OnboardingState:
        raw = self._section("onboarding")
        state = OnboardingState()
        if isinstance(raw.get("completed"), bool):
            state.completed = raw["completed"]
        if isinstance(raw.get("dont_show_again"), bool):
            state.dont_show_again = raw["dont_show_again"]
        skip_count = raw.get("skip_count")
        if isinstance(skip_count, int) and not isinstance(skip_count, bool) and skip_count >= 0:
            state.skip_count = skip_count
        return state

    def save_onboarding_state(self, state: OnboardingState) -> None:
        self._data["onboarding"] = asdict(state)
        self._flush()

    def mark_version_seen(self, version: str) -> bool:
        """Record ``version`` as seen; return True when it was not seen before."""
        section = self._section("app_version")
        shown = section.get("whats_new_shown")
        if not isinstance(shown, dict):
            shown = {}
        last_seen = section.get("last_seen_version")
        if last_seen == version and shown.get(version) is True:
            return False
        shown[version] = True
        section["last_seen_version"] = version
        section["whats_new_shown"] = shown
        self._flush()
        return True

    def font_size(self) -> str:
        value = self._data.get("font_size")
        return value if value in FONT_SIZES else DEFAULT_FONT_SIZE

    def set_font_size(self, size: str) -> None:
        if size not in FONT_SIZES:
            raise ValueError(f"Unsupported font size: {size}")
        self._data["font_size"] = size
        self._flush()

    def _section(self, key: str) -> dict[str, Any]:
        section = self._data.get(key)
        if not isinstance(section, dict):
            if section is not None:
                logging.warning("settings_invalid_section key=%s type=%s", key, type(section).__name__)
            section = {}
            self._data[key] = section
        return section

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logging.warning("settings_load_failed path=%s error=%s", self._path, exc)
            return
        if not isinstance(payload, dict):
            logging.warning("settings_load_failed path=%s error=top-level value is not an object", self._path)
            return
        self._data = payload

    def _flush(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("w", encoding="utf-8") as handle:
                json.dump(self._data, handle, ensure_ascii=False, indent=2)
        except OSError as exc:
            logging.warning("settings_save_failed path=%s error=%s", self._path, exc)

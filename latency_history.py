from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Final, Optional

from settings_store import MAX_STORED_SAMPLES, SettingsStore


@dataclass(frozen=True)
class LatencySample:
    finalization_delay_ms: float
    timestamp: float


@dataclass(frozen=True)
class LatencyBand:
    min_ms: int
    max_ms: int

    def clamp(self, value: float) -> int:
        return int(round(min(self.max_ms, max(self.min_ms, value))))


MIN_SAMPLES_FOR_RECOMMENDATION: Final[int] = 30
RECOMMENDATION_PERCENTILE: Final[float] = 0.70
LATENCY_BANDS: Final[dict[str, LatencyBand]] = {
    "en": LatencyBand(100, 400),
    "ja": LatencyBand(200, 800),
}
DEFAULT_BAND: Final[LatencyBand] = LatencyBand(150, 800)


def _nearest_rank(ordered: list[float], ratio: float) -> float:
    index = max(0, math.ceil(round(ratio * len(ordered), 9)) - 1)
    return ordered[min(index, len(ordered) - 1)]


class LatencyHistory:
    """Per-language FIFO of finalization delays used to tune the debounce delay."""

    def __init__(self, store: Optional[SettingsStore] = None, capacity: int = MAX_STORED_SAMPLES) -> None:
        self._store = store
        self._capacity = capacity
        self._samples: dict[str, deque[LatencySample]] = {}

    def record(self, language: str, delay_ms: float, timestamp: Optional[float] = None) -> None:
        samples = self._samples_for(language)
        samples.append(LatencySample(float(delay_ms), time.time() if timestamp is None else timestamp))
        self._persist(language)

    def recommend(self, language: str) -> Optional[int]:
        samples = self._samples_for(language)
        if len(samples) < MIN_SAMPLES_FOR_RECOMMENDATION:
            return None
        ordered = sorted(sample.finalization_delay_ms for sample in samples)
        raw = _nearest_rank(ordered, RECOMMENDATION_PERCENTILE)
        recommended = LATENCY_BANDS.get(language, DEFAULT_BAND).clamp(raw)
        logging.info(
            "latency_recommendation language=%s samples=%d p70_ms=%.1f recommended_ms=%d",
            language,
            len(ordered),
            raw,
            recommended,
        )
        # Next tuning pass starts from a fresh window.
        samples.clear()
        self._persist(language)
        return recommended

    def samples(self, language: str) -> list[LatencySample]:
        return list(self._samples_for(language))

    def count(self, language: str) -> int:
        return len(self._samples_for(language))

    def _samples_for(self, language: str) -> deque[LatencySample]:
        samples = self._samples.get(language)
        if samples is None:
            samples = deque(maxlen=self._capacity)
            if self._store is not None:
                for entry in self._store.latency_samples(language):
                    samples.append(LatencySample(entry["delay_ms"], entry["timestamp"]))
            self._samples[language] = samples
        return samples

    def _persist(self, language: str) -> None:
        if self._store is None:
            return
        self._store.set_latency_samples(
            language,
            [
                {"delay_ms": sample.finalization_delay_ms, "timestamp": sample.timestamp}
                for sample in self._samples[language]
            ],
        )

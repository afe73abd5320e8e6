from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Final, Optional

import numpy as np

from sentence_formatter import SentenceFormatter

FATAL_SPEECH_ERRORS: Final[frozenset[str]] = frozenset({"audio-capture", "not-allowed", "network", "session-failed"})
DEFAULT_MAX_IDENTITIES: Final[int] = 500


@dataclass
class AudioFrame:
    captured_at: datetime
    sample_rate: int
    samples: np.ndarray


@dataclass(frozen=True)
class SpeechHypothesis:
    text: str
    is_final: bool


@dataclass(frozen=True)
class SpeechResultEvent:
    hypotheses: tuple[SpeechHypothesis, ...]
    start_index: int = 0


class SpeechEngineError(RuntimeError):
    def __init__(self, code: str, message: str = "", fatal: Optional[bool] = None) -> None:
        super().__init__(message or code)
        self.code = code
        self.fatal = code in FATAL_SPEECH_ERRORS if fatal is None else fatal


@dataclass(frozen=True)
class TranscriptSegment:
    position: int
    text: str
    final: bool


@dataclass(frozen=True)
class TranscriptUpdate:
    has_new_content: bool
    new_final_positions: tuple[int, ...] = ()
    interim_positions: tuple[int, ...] = ()

    @property
    def has_new_final(self) -> bool:
        return bool(self.new_final_positions)


class ResultDeduplicator:
    """Bounded set of already-finalized hypothesis identities (position + text)."""

    def __init__(self, max_size: int = DEFAULT_MAX_IDENTITIES) -> None:
        self._max_size = max_size
        self._seen: OrderedDict[str, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, identity: str) -> bool:
        return identity in self._seen

    @staticmethod
    def identity(position: int, text: str) -> str:
        return f"{position}-{text}"

    def add(self, identity: str) -> bool:
        if identity in self._seen:
            return False
        self._seen[identity] = None
        while len(self._seen) > self._max_size:
            self._seen.popitem(last=False)
        return True

    def clear(self) -> None:
        self._seen.clear()


@dataclass
class TranscriptState:
    formatter: SentenceFormatter
    dedup: ResultDeduplicator = field(default_factory=ResultDeduplicator)
    segments: list[TranscriptSegment] = field(default_factory=list)
    _finals: dict[int, str] = field(default_factory=dict)
    # Finals the engine has evicted; they stay in the transcript as a fixed prefix.
    _committed: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        parts = self._committed + [segment.text for segment in self.segments]
        return " ".join(part for part in parts if part).strip()

    def apply(self, event: SpeechResultEvent) -> TranscriptUpdate:
        segments: list[TranscriptSegment] = []
        new_finals: list[int] = []
        interims: list[int] = []
        for offset, hypothesis in enumerate(event.hypotheses):
            position = event.start_index + offset
            text = (hypothesis.text or "").strip()
            if not text:
                continue
            if hypothesis.is_final:
                # A finalized position keeps its first text even if the engine revises it.
                if position not in self._finals and self.dedup.add(ResultDeduplicator.identity(position, text)):
                    new_finals.append(position)
                    self._finals[position] = self.formatter.format(text)
                segments.append(TranscriptSegment(position, self._finals.get(position, text), True))
            elif position in self._finals:
                segments.append(TranscriptSegment(position, self._finals[position], True))
            else:
                interims.append(position)
                segments.append(TranscriptSegment(position, text, False))
        self.segments = segments
        for position in sorted(p for p in self._finals if p < event.start_index):
            self._committed.append(self._finals.pop(position))
        return TranscriptUpdate(
            has_new_content=bool(new_finals or interims),
            new_final_positions=tuple(new_finals),
            interim_positions=tuple(interims),
        )

    def clear(self) -> None:
        self.segments = []
        self._finals.clear()
        self._committed.clear()
        self.dedup.clear()

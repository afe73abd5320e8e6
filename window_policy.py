from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Final, Optional

SENTENCE_END_RE: Final = re.compile(r"[。．.！？!?]\s*$")
SENTENCE_SPLIT_RE: Final = re.compile(r"(?<=[。．.！？!?])\s*")
WINDOW_CHARS: Final[dict[str, int]] = {"ja": 120, "en": 90}
DEFAULT_WINDOW_CHARS: Final[int] = 100


class WindowMode(str, Enum):
    FAST = "fast"
    FINAL = "final"


@dataclass(frozen=True)
class SubmissionWindow:
    text: str
    mode: WindowMode


class WindowPolicy:
    """Chooses what part of the transcript to translate next.

    Final windows carry the last complete sentence once a newly finalized
    segment closes it; everything else goes out as a trailing fast window.
    A fast window identical to the previous one is suppressed.
    """

    def __init__(self, language: str, window_chars: Optional[int] = None) -> None:
        self.language = language
        self._window_chars = window_chars or WINDOW_CHARS.get(language, DEFAULT_WINDOW_CHARS)
        self._last_fast = ""

    @property
    def window_chars(self) -> int:
        return self._window_chars

    def decide(self, transcript: str, has_new_final_segment: bool) -> Optional[SubmissionWindow]:
        if not transcript or not transcript.strip():
            return None
        if has_new_final_segment and SENTENCE_END_RE.search(transcript):
            # A corrected sentence invalidates the trailing-window dedup state.
            self._last_fast = ""
            return SubmissionWindow(self._last_sentence(transcript), WindowMode.FINAL)
        tail = transcript[-self._window_chars :] if len(transcript) > self._window_chars else transcript
        if tail == self._last_fast:
            return None
        self._last_fast = tail
        stripped = tail.strip()
        if not stripped:
            return None
        return SubmissionWindow(stripped, WindowMode.FAST)

    def reset(self) -> None:
        self._last_fast = ""

    @staticmethod
    def _last_sentence(transcript: str) -> str:
        parts = [part for part in SENTENCE_SPLIT_RE.split(transcript) if part.strip()]
        return parts[-1].strip() if parts else transcript.strip()

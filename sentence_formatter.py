from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Optional, Sequence


@dataclass(frozen=True)
class PunctuationRule:
    pattern: "re.Pattern[str]"
    replacement: str

    @classmethod
    def compile(cls, pattern: str, replacement: str) -> "PunctuationRule":
        return cls(re.compile(pattern), replacement)

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


class SentenceFormatter:
    """Rule-table punctuation normalizer for finalized transcript fragments.

    Rules are applied in order, then a terminal mark is appended when the
    fragment does not already end with one.
    """

    def __init__(
        self,
        rules: Sequence[PunctuationRule] = (),
        terminal_mark: Optional[str] = None,
        terminal_chars: str = "。.?？！!",
    ) -> None:
        self._rules = tuple(rules)
        self._terminal_mark = terminal_mark
        self._terminal_chars = terminal_chars

    def format(self, text: str) -> str:
        if not text or not text.strip():
            return text
        out = text
        for rule in self._rules:
            out = rule.apply(out)
        return self._add_terminal_mark(out)

    def _add_terminal_mark(self, text: str) -> str:
        if not self._terminal_mark:
            return text
        if text[-1] in self._terminal_chars:
            return text
        return f"{text}{self._terminal_mark}"


JAPANESE_COMMA_RULES: Final[tuple[PunctuationRule, ...]] = tuple(
    PunctuationRule.compile(pattern, replacement)
    for pattern, replacement in (
        (r"([^、。])そして", r"\1、そして"),
        (r"([^、。])しかし", r"\1、しかし"),
        (r"([^、。])ですが", r"\1、ですが"),
        (r"([^、。])また", r"\1、また"),
        (r"([^、。])けれども", r"\1、けれども"),
        (r"([^、。])だから", r"\1、だから"),
        (r"([^、。])ので", r"\1、ので"),
        (r"(.{10,})から(.{10,})", r"\1から、\2"),
        (r"(.{10,})ので(.{10,})", r"\1ので、\2"),
        (r"(.{10,})けど(.{10,})", r"\1けど、\2"),
    )
)

_FORMATTERS: Final[dict[str, SentenceFormatter]] = {
    "ja": SentenceFormatter(JAPANESE_COMMA_RULES, terminal_mark="。"),
}
_PASSTHROUGH = SentenceFormatter()


def formatter_for(language: str) -> SentenceFormatter:
    return _FORMATTERS.get((language or "").lower(), _PASSTHROUGH)


def register_formatter(language: str, formatter: SentenceFormatter) -> None:
    _FORMATTERS[language.lower()] = formatter

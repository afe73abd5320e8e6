from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, Callable, Final, Optional, Union

from window_policy import WindowMode

DELTA_EVENT: Final[str] = "response.output_text.delta"
COMPLETED_EVENT: Final[str] = "response.completed"
BLOCK_SEPARATOR: Final[str] = "\n\n"


class StreamDecoder:
    """Incremental parser for the provider's server-sent event stream.

    Blocks are separated by a blank line. Partial blocks stay in the carry
    buffer until the rest arrives, so the output does not depend on how the
    transport splits the bytes.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._carry = ""
        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    def feed(self, chunk: Union[bytes, str]) -> list[str]:
        if self._completed:
            return []
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        if not text:
            return []
        # CRLF framing is folded to LF so blocks split on a single separator.
        self._carry = (self._carry + text).replace("\r\n", "\n")
        increments: list[str] = []
        while not self._completed:
            idx = self._carry.find(BLOCK_SEPARATOR)
            if idx == -1:
                break
            block = self._carry[:idx]
            self._carry = self._carry[idx + len(BLOCK_SEPARATOR) :]
            delta = self._parse_block(block)
            if delta:
                increments.append(delta)
        return increments

    def finish(self) -> None:
        if self._completed:
            return
        self._carry += self._decoder.decode(b"", final=True)
        leftover = self._carry.strip()
        if leftover:
            logging.warning("stream_decoder_leftover chars=%d", len(leftover))
        self._carry = ""

    async def iter_increments(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
        async for chunk in chunks:
            for delta in self.feed(chunk):
                yield delta
            if self._completed:
                return
        self.finish()

    def _parse_block(self, block: str) -> Optional[str]:
        event_type: Optional[str] = None
        data_lines: list[str] = []
        for raw_line in block.split("\n"):
            line = raw_line.rstrip("\r")
            if line.startswith("event:"):
                event_type = line[len("event:") :].strip()
            elif line.startswith("data:"):
                value = line[len("data:") :]
                data_lines.append(value[1:] if value.startswith(" ") else value)
        if not event_type:
            return None
        if event_type == COMPLETED_EVENT:
            self._completed = True
            self._carry = ""
            return None
        if event_type != DELTA_EVENT or not data_lines:
            return None
        try:
            payload = json.loads("\n".join(data_lines))
        except ValueError:
            logging.debug("stream_decoder_skipped_block reason=invalid_json")
            return None
        if not isinstance(payload, dict):
            return None
        delta = payload.get("delta")
        return delta if isinstance(delta, str) and delta else None


class IncrementAccumulator:
    """Builds the visible translation from one request's increments.

    In final mode the first increment resets whatever fast-mode output is on
    screen before it is appended.
    """

    def __init__(
        self,
        mode: WindowMode,
        on_text: Callable[[str], None],
        on_reset: Optional[Callable[[], None]] = None,
    ) -> None:
        self._mode = mode
        self._on_text = on_text
        self._on_reset = on_reset
        self._text = ""
        self._received = 0

    @property
    def text(self) -> str:
        return self._text

    @property
    def received(self) -> int:
        return self._received

    def add(self, delta: str) -> None:
        if not delta:
            return
        if self._received == 0 and self._mode is WindowMode.FINAL and self._on_reset is not None:
            self._on_reset()
        self._received += 1
        self._text += delta
        self._on_text(self._text)

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional, Sequence


def sse_event(event: str, data: Any) -> bytes:
    payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    return f"event: {event}\ndata: {payload}\n\n".encode("utf-8")


def delta_event(text: str) -> bytes:
    return sse_event("response.output_text.delta", {"type": "response.output_text.delta", "delta": text})


def completed_event() -> bytes:
    return sse_event("response.completed", {"type": "response.completed"})


class ScriptedStreamClient:
    """Translation client double that replays fixed chunks, optionally after a gate opens."""

    def __init__(
        self,
        chunks: Sequence[bytes] = (),
        gate: Optional[asyncio.Event] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.chunks = list(chunks)
        self.gate = gate
        self.error = error
        self.calls: list[tuple[str, str]] = []

    @asynccontextmanager
    async def open_stream(self, text: str, source_language: str) -> AsyncIterator[AsyncIterator[bytes]]:
        self.calls.append((text, source_language))
        if self.error is not None:
            raise self.error
        yield self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        if self.gate is not None:
            await self.gate.wait()
        for chunk in self.chunks:
            yield chunk


class ManualTimer:
    """Debounce timer double fired explicitly by the test."""

    def __init__(self) -> None:
        self.callback: Optional[Callable[[], None]] = None
        self.delays: list[float] = []

    @property
    def armed(self) -> bool:
        return self.callback is not None

    def arm(self, delay_ms: float, callback: Callable[[], None]) -> object:
        self.delays.append(delay_ms)
        self.callback = callback
        return object()

    def disarm(self, handle: object = None) -> None:
        self.callback = None

    def fire(self) -> None:
        callback = self.callback
        self.callback = None
        if callback is not None:
            callback()


class RecordingSink:
    def __init__(self) -> None:
        self.original: list[str] = []
        self.translations: list[str] = []
        self.resets = 0
        self.busy: list[bool] = []
        self.statuses: list[str] = []
        self.errors: list[str] = []
        self.clears = 0

    def show_original(self, text: str) -> None:
        self.original.append(text)

    def show_translation(self, text: str) -> None:
        self.translations.append(text)

    def reset_translation(self) -> None:
        self.resets += 1

    def set_translating(self, active: bool) -> None:
        self.busy.append(active)

    def set_status(self, message: str) -> None:
        self.statuses.append(message)

    def show_error(self, message: str) -> None:
        self.errors.append(message)

    def clear(self) -> None:
        self.clears += 1

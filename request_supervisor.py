from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncContextManager, AsyncIterator, Callable, Optional, Protocol

from stream_decoder import IncrementAccumulator, StreamDecoder
from translation_client import TranslationTransportError
from window_policy import SubmissionWindow, WindowMode


class TranslationStreamClient(Protocol):
    def open_stream(self, text: str, source_language: str) -> AsyncContextManager[AsyncIterator[bytes]]:
        ...


class RequestState(str, Enum):
    CREATED = "created"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RequestState.COMPLETED, RequestState.CANCELLED, RequestState.FAILED)


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass
class TranslationRequest:
    id: int
    submitted_text: str
    mode: WindowMode
    token: CancellationToken = field(default_factory=CancellationToken)
    state: RequestState = RequestState.CREATED
    error: Optional[str] = None
    increments: int = 0
    task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return not self.state.terminal


class RequestSupervisor:
    """Keeps at most one translation request in flight.

    Submitting a new window cancels the active request first; the cancelled
    request's remaining increments and errors are dropped.
    """

    def __init__(
        self,
        client: TranslationStreamClient,
        source_language: Callable[[], str],
        on_text: Callable[[str], None],
        on_reset: Optional[Callable[[], None]] = None,
        on_busy: Optional[Callable[[bool], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        request_timeout_s: Optional[float] = None,
    ) -> None:
        self._client = client
        self._source_language = source_language
        self._on_text = on_text
        self._on_reset = on_reset
        self._on_busy = on_busy
        self._on_error = on_error
        self._request_timeout_s = request_timeout_s
        self._ids = itertools.count(1)
        self._active: Optional[TranslationRequest] = None

    @property
    def active(self) -> Optional[TranslationRequest]:
        request = self._active
        return request if request is not None and request.active else None

    def submit(self, window: SubmissionWindow) -> TranslationRequest:
        superseded = self._cancel(self.active)
        request = TranslationRequest(id=next(self._ids), submitted_text=window.text, mode=window.mode)
        self._active = request
        if not superseded:
            self._set_busy(True)
        logging.info(
            "translation_request_submitted id=%d mode=%s chars=%d",
            request.id,
            request.mode.value,
            len(request.submitted_text),
        )
        request.task = asyncio.create_task(self._run(request), name=f"translation-request-{request.id}")
        request.task.add_done_callback(self._finalize)
        return request

    def cancel_active(self) -> bool:
        if not self._cancel(self.active):
            return False
        self._set_busy(False)
        return True

    def _cancel(self, request: Optional[TranslationRequest]) -> bool:
        if request is None:
            return False
        if self._active is request:
            self._active = None
        request.token.cancel()
        if request.active:
            request.state = RequestState.CANCELLED
        if request.task is not None and not request.task.done():
            request.task.cancel()
        logging.info("translation_request_cancelled id=%d", request.id)
        return True

    async def _run(self, request: TranslationRequest) -> None:
        try:
            if self._request_timeout_s:
                await asyncio.wait_for(self._stream(request), timeout=self._request_timeout_s)
            else:
                await self._stream(request)
        except asyncio.CancelledError:
            request.state = RequestState.CANCELLED
            raise
        except asyncio.TimeoutError as exc:
            if self._request_timeout_s:
                self._fail(request, f"Translation timed out after {self._request_timeout_s:g}s")
            else:
                self._fail(request, str(exc) or "Translation service timed out.")
        except TranslationTransportError as exc:
            self._fail(request, str(exc))
        except Exception as exc:  # noqa: BLE001 - request boundary
            self._fail(request, str(exc) or "Translation failed. Please try again.")
        else:
            request.state = RequestState.CANCELLED if request.token.cancelled else RequestState.COMPLETED

    async def _stream(self, request: TranslationRequest) -> None:
        if request.token.cancelled:
            return
        accumulator = IncrementAccumulator(request.mode, self._on_text, self._on_reset)
        decoder = StreamDecoder()
        async with self._client.open_stream(request.submitted_text, self._source_language()) as chunks:
            request.state = RequestState.STREAMING
            async for delta in decoder.iter_increments(chunks):
                if request.token.cancelled:
                    return
                accumulator.add(delta)
                request.increments += 1

    def _fail(self, request: TranslationRequest, message: str) -> None:
        if request.token.cancelled:
            request.state = RequestState.CANCELLED
            return
        request.state = RequestState.FAILED
        request.error = message
        logging.warning("translation_request_failed id=%d error=%s", request.id, message)
        if self._on_error is not None:
            self._on_error(message)

    def _finalize(self, task: "asyncio.Task[None]") -> None:
        request = self._active
        if request is not None and request.task is task:
            self._active = None
            self._set_busy(False)

    def _set_busy(self, busy: bool) -> None:
        if self._on_busy is not None:
            self._on_busy(busy)

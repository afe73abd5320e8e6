from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from time import perf_counter
from typing import Callable, Final, Optional, Protocol

from debounce import DebounceParameters, DebounceTimer
from latency_history import LatencyHistory
from request_supervisor import RequestSupervisor, TranslationRequest, TranslationStreamClient
from sentence_formatter import formatter_for
from speech_input import SpeechEngineError, SpeechResultEvent, TranscriptState
from translation_client import SUPPORTED_LANGUAGES
from window_policy import WindowPolicy

TRANSLATION_ERROR_PLACEHOLDER: Final[str] = "(translation error - please try again)"
RECENT_SUBMISSIONS_MAXLEN: Final[int] = 32
SPEECH_ERROR_HINTS: Final[dict[str, str]] = {
    "audio-capture": "No microphone detected. Check your input device settings.",
    "not-allowed": "Microphone permission denied. Allow microphone access and try again.",
    "network": "Lost connection to the speech service.",
    "session-failed": "Could not start the speech session. Check OPENAI_API_KEY.",
}


def speech_error_hint(code: str) -> str:
    return SPEECH_ERROR_HINTS.get(code, "Speech recognition failed.")


class DisplaySink(Protocol):
    def show_original(self, text: str) -> None: ...

    def show_translation(self, text: str) -> None: ...

    def reset_translation(self) -> None: ...

    def set_translating(self, active: bool) -> None: ...

    def set_status(self, message: str) -> None: ...

    def show_error(self, message: str) -> None: ...

    def clear(self) -> None: ...


class PipelineState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    DEBOUNCING = "debouncing"
    STREAMING = "streaming"


class PipelineController:
    """Turns speech results into superseding streaming translation requests.

    Every update with new content re-arms the debounce timer. On expiry the
    window policy picks the text to send and the supervisor replaces any
    request still in flight. Finalization delays feed the latency history,
    which periodically retunes the per-language debounce delay.
    """

    def __init__(
        self,
        sink: DisplaySink,
        client: TranslationStreamClient,
        history: Optional[LatencyHistory] = None,
        parameters: Optional[DebounceParameters] = None,
        timer: Optional[DebounceTimer] = None,
        request_timeout_s: Optional[float] = None,
        on_stopped: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = perf_counter,
    ) -> None:
        self.sink = sink
        self.history = history or LatencyHistory()
        self.parameters = parameters or DebounceParameters()
        self._timer = timer or DebounceTimer()
        self._on_stopped = on_stopped
        self._clock = clock
        self.language = "ja"
        self.transcript = TranscriptState(formatter_for(self.language))
        self.policy = WindowPolicy(self.language)
        self.supervisor = RequestSupervisor(
            client,
            source_language=lambda: self.language,
            on_text=self._on_translation_text,
            on_reset=self._on_translation_reset,
            on_busy=self.sink.set_translating,
            on_error=self._on_translation_error,
            request_timeout_s=request_timeout_s,
        )
        self._running = False
        self._pending_final = False
        self._interim_started_at: dict[int, float] = {}
        self._translation_text = ""
        self.recent_submissions: deque[TranslationRequest] = deque(maxlen=RECENT_SUBMISSIONS_MAXLEN)
        self.submission_count = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def state(self) -> PipelineState:
        if not self._running:
            return PipelineState.IDLE
        if self._timer.armed:
            return PipelineState.DEBOUNCING
        if self.supervisor.active is not None:
            return PipelineState.STREAMING
        return PipelineState.LISTENING

    @property
    def translation_text(self) -> str:
        return self._translation_text

    def start(self, language: str) -> None:
        if self._running:
            return
        if language not in SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported source language: {language}")
        self.language = language
        self.transcript = TranscriptState(formatter_for(language))
        self.policy = WindowPolicy(language)
        self._pending_final = False
        self._interim_started_at.clear()
        self.recent_submissions.clear()
        self.submission_count = 0
        self._translation_text = ""
        self.sink.clear()
        self._running = True
        self.sink.set_status("Listening...")
        logging.info("pipeline_started language=%s debounce_ms=%d", language, self.parameters.delay_ms(language))

    def stop(self) -> None:
        if not self._running:
            return
        self._halt()
        self.sink.set_status("Stopped.")
        logging.info("pipeline_stopped language=%s", self.language)

    def reset(self) -> None:
        self._halt()
        self.transcript.clear()
        self.policy.reset()
        self._interim_started_at.clear()
        self._translation_text = ""
        self.sink.clear()
        self.sink.set_status("Idle")

    def on_speech_result(self, event: SpeechResultEvent) -> None:
        if not self._running:
            return
        now = self._clock()
        update = self.transcript.apply(event)
        for position in update.interim_positions:
            self._interim_started_at.setdefault(position, now)
        for position in update.new_final_positions:
            self._record_finalization(position, now)
        self.sink.show_original(self.transcript.text)
        if not update.has_new_content:
            return
        self._pending_final = self._pending_final or update.has_new_final
        self._timer.arm(self.parameters.delay_ms(self.language), self._on_debounce_elapsed)

    def on_speech_error(self, error: SpeechEngineError) -> None:
        if not error.fatal:
            logging.info("speech_error_transient code=%s message=%s", error.code, error)
            return
        logging.warning("speech_error_fatal code=%s message=%s", error.code, error)
        was_running = self._running
        self.stop()
        self.sink.set_status(f"Speech input stopped: {error}")
        self.sink.show_error(speech_error_hint(error.code))
        if was_running and self._on_stopped is not None:
            self._on_stopped()

    def _halt(self) -> None:
        self._running = False
        self._timer.disarm()
        self._pending_final = False
        self.supervisor.cancel_active()
        self.sink.set_translating(False)

    def _on_debounce_elapsed(self) -> None:
        if not self._running:
            return
        has_final = self._pending_final
        self._pending_final = False
        window = self.policy.decide(self.transcript.text, has_final)
        if window is None:
            return
        self.recent_submissions.append(self.supervisor.submit(window))
        self.submission_count += 1

    def _record_finalization(self, position: int, now: float) -> None:
        started = self._interim_started_at.pop(position, None)
        for stale in [p for p in self._interim_started_at if p < position]:
            del self._interim_started_at[stale]
        if started is None:
            return
        delay_ms = (now - started) * 1000.0
        self.history.record(self.language, delay_ms)
        recommended = self.history.recommend(self.language)
        if recommended is not None:
            self.parameters.apply(self.language, recommended)

    def _on_translation_text(self, text: str) -> None:
        self._translation_text = text
        self.sink.show_translation(text)

    def _on_translation_reset(self) -> None:
        self._translation_text = ""
        self.sink.reset_translation()

    def _on_translation_error(self, message: str) -> None:
        self.sink.show_error(message)
        if not self._translation_text:
            self.sink.show_translation(TRANSLATION_ERROR_PLACEHOLDER)

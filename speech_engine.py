from __future__ import annotations

import asyncio
import base64
import logging
import os
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Callable, Final, Optional

import numpy as np
from openai import AsyncOpenAI

from config_utils import read_float_env, read_int_env, read_str_env
from speech_input import AudioFrame, SpeechEngineError, SpeechHypothesis, SpeechResultEvent

MAX_TRACKED_ITEMS: Final[int] = 40
REALTIME_SAMPLE_RATE: Final[int] = 24000


@dataclass
class _TrackedItem:
    item_id: str
    text: str
    is_final: bool


class RealtimeSpeechEngine:
    """Speech collaborator backed by an OpenAI realtime transcription session.

    Each delta refreshes the interim hypothesis of its item and each completed
    event finalizes it; after every change the full ordered hypothesis list is
    handed to ``on_result``. Old items are evicted from the front and
    ``start_index`` advances so positions stay stable.
    """

    def __init__(
        self,
        on_result: Callable[[SpeechResultEvent], None],
        on_error: Callable[[SpeechEngineError], None],
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini-transcribe",
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        if client is None:
            key = api_key or os.getenv("OPENAI_API_KEY")
            if not key:
                raise SpeechEngineError("session-failed", "OPENAI_API_KEY is required for speech recognition.")
            client = AsyncOpenAI(api_key=key)
        self._client = client
        self._on_result = on_result
        self._on_error = on_error
        self._session_model = read_str_env("REALTIME_SESSION_MODEL", "gpt-realtime-mini")
        self._model = read_str_env("TRANSCRIPTION_MODEL", model)
        self._vad_threshold = read_float_env("REALTIME_VAD_THRESHOLD", 0.45)
        self._vad_prefix_padding_ms = read_int_env("REALTIME_VAD_PREFIX_MS", 220)
        self._vad_silence_duration_ms = read_int_env("REALTIME_VAD_SILENCE_MS", 220)
        self._language: Optional[str] = None
        self._connection: Any = None
        self._receiver_task: Optional[asyncio.Task[None]] = None
        self._running = False
        self._items: list[_TrackedItem] = []
        self._start_index = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, language: str) -> None:
        if self._running:
            return
        self._language = language
        self.reset_context()
        connection = None
        try:
            connection = await self._client.realtime.connect(model=self._session_model).enter()
            await connection.session.update(
                session={
                    "type": "transcription",
                    "audio": {
                        "input": {
                            "format": {"type": "audio/pcm", "rate": REALTIME_SAMPLE_RATE},
                            "transcription": {"model": self._model, "language": language},
                            "turn_detection": {
                                "type": "server_vad",
                                "prefix_padding_ms": self._vad_prefix_padding_ms,
                                "silence_duration_ms": self._vad_silence_duration_ms,
                                "threshold": self._vad_threshold,
                            },
                        }
                    },
                }
            )
        except Exception as exc:  # noqa: BLE001 - realtime startup boundary
            if connection is not None:
                with suppress(Exception):
                    await connection.close()
            raise SpeechEngineError("session-failed", f"Could not start speech session: {exc}") from exc
        self._connection = connection
        self._running = True
        self._receiver_task = asyncio.create_task(self._receive_events(), name="realtime-speech-recv")

    async def stop(self) -> None:
        self._running = False
        if self._receiver_task is not None:
            self._receiver_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._receiver_task
            self._receiver_task = None
        if self._connection is not None:
            with suppress(Exception):
                await self._connection.close()
            self._connection = None

    def reset_context(self) -> None:
        self._items.clear()
        self._start_index = 0

    async def append_audio(self, frame: AudioFrame) -> None:
        if not self._running or self._connection is None:
            return
        pcm16_bytes = self._to_pcm16_24khz(frame.samples, frame.sample_rate)
        await self._connection.input_audio_buffer.append(audio=base64.b64encode(pcm16_bytes).decode("ascii"))

    async def pump(self, frames: "asyncio.Queue[AudioFrame]") -> None:
        while self._running:
            frame = await frames.get()
            await self.append_audio(frame)

    async def _receive_events(self) -> None:
        assert self._connection is not None
        try:
            async for event in self._connection:
                self.handle_event(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - realtime boundary
            self._connection_lost(f"Speech connection lost: {exc}")
            return
        self._connection_lost("Speech connection closed by server")

    def _connection_lost(self, message: str) -> None:
        if not self._running:
            return
        self._running = False
        self._on_error(SpeechEngineError("network", message))

    def handle_event(self, event: Any) -> None:
        event_type = getattr(event, "type", "")
        if event_type == "conversation.item.input_audio_transcription.delta":
            self._on_delta(getattr(event, "item_id", "") or "", getattr(event, "delta", None) or "")
        elif event_type == "conversation.item.input_audio_transcription.completed":
            self._on_completed(getattr(event, "item_id", "") or "", getattr(event, "transcript", None) or "")
        elif event_type == "conversation.item.input_audio_transcription.failed":
            message = getattr(getattr(event, "error", None), "message", None) or "Transcription failed"
            self._on_error(SpeechEngineError("no-speech", str(message), fatal=False))
        elif event_type == "error":
            message = getattr(getattr(event, "error", None), "message", None) or "Unknown realtime error"
            self._on_error(SpeechEngineError("realtime-error", str(message), fatal=False))

    def _on_delta(self, item_id: str, delta: str) -> None:
        if not item_id or not delta.strip():
            return
        item = self._find(item_id)
        if item is None:
            item = self._track(item_id)
        if item.is_final:
            return
        item.text = self._merge_preview_text(item.text, delta)
        self._publish()

    def _on_completed(self, item_id: str, transcript: str) -> None:
        transcript = transcript.strip()
        if not item_id:
            return
        item = self._find(item_id)
        if item is None:
            if not transcript:
                return
            item = self._track(item_id)
        # Empty items stay in place so later positions do not shift.
        item.text = transcript
        item.is_final = True
        self._publish()

    def _find(self, item_id: str) -> Optional[_TrackedItem]:
        for item in self._items:
            if item.item_id == item_id:
                return item
        return None

    def _track(self, item_id: str) -> _TrackedItem:
        item = _TrackedItem(item_id=item_id, text="", is_final=False)
        self._items.append(item)
        while len(self._items) > MAX_TRACKED_ITEMS:
            self._items.pop(0)
            self._start_index += 1
        return item

    def _publish(self) -> None:
        hypotheses = tuple(SpeechHypothesis(text=item.text, is_final=item.is_final) for item in self._items)
        logging.debug("speech_result items=%d start_index=%d", len(hypotheses), self._start_index)
        self._on_result(SpeechResultEvent(hypotheses=hypotheses, start_index=self._start_index))

    @staticmethod
    def _merge_preview_text(current: str, delta: str) -> str:
        if not current:
            return delta.strip()
        return f"{current}{delta}"

    @staticmethod
    def _to_pcm16_24khz(samples: np.ndarray, sample_rate: int) -> bytes:
        mono = np.asarray(samples, dtype=np.float32).reshape(-1)
        if sample_rate != REALTIME_SAMPLE_RATE:
            target_len = max(1, int(round(mono.shape[0] * REALTIME_SAMPLE_RATE / sample_rate)))
            src_x = np.linspace(0.0, 1.0, num=mono.shape[0], endpoint=False)
            dst_x = np.linspace(0.0, 1.0, num=target_len, endpoint=False)
            mono = np.interp(dst_x, src_x, mono).astype(np.float32)
        clamped = np.clip(mono, -1.0, 1.0)
        return (clamped * 32767).astype(np.int16).tobytes()

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

import numpy as np
import sounddevice as sd

from config_utils import read_int_env
from speech_input import AudioFrame, SpeechEngineError


class MicrophoneListener:
    """Captures microphone audio on PortAudio's thread and hands frames to the loop.

    Frames are published to a bounded queue. When the speech session falls
    behind, the oldest queued frame is dropped so recognition stays close to
    real time.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        output_queue: asyncio.Queue[AudioFrame],
        sample_rate: int = 16000,
        channels: int = 1,
        preferred_device: Optional[str] = None,
    ) -> None:
        self._loop = loop
        self._output_queue = output_queue
        self._sample_rate = sample_rate
        self._channels = channels
        self._preferred_device = preferred_device
        self._block_frames = max(0, sample_rate * read_int_env("AUDIO_BLOCK_MS", 40) // 1000)
        self._stream: Optional[sd.InputStream] = None
        self._running = False
        self.dropped_frames = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @staticmethod
    def list_input_devices() -> list[str]:
        return [
            str(device.get("name", "Unknown input device"))
            for device in sd.query_devices()
            if int(device.get("max_input_channels", 0)) > 0
        ]

    def start(self) -> None:
        if self._running:
            return
        device = self._resolve_input_device()
        try:
            stream = sd.InputStream(
                samplerate=self._sample_rate,
                channels=self._channels,
                dtype="float32",
                blocksize=self._block_frames,
                device=device,
                callback=self._audio_callback,
            )
            stream.start()
        except sd.PortAudioError as exc:
            raise SpeechEngineError("audio-capture", f"Microphone could not be opened: {exc}") from exc
        self._stream = stream
        self.dropped_frames = 0
        self._running = True
        logging.info("microphone_started device=%s rate=%d", device or "default", self._sample_rate)

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as exc:
            logging.warning("microphone_stop_failed error=%s", exc)
        logging.info("microphone_stopped dropped_frames=%d", self.dropped_frames)

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        del frames, time_info
        if status:
            logging.debug("microphone_status status=%s", status)
        if not self._running:
            return
        self._loop.call_soon_threadsafe(self._publish_frame, np.copy(indata[:, 0]), datetime.now())

    def _publish_frame(self, samples: np.ndarray, captured_at: datetime) -> None:
        frame = AudioFrame(captured_at=captured_at, sample_rate=self._sample_rate, samples=samples)
        if self._output_queue.full():
            try:
                self._output_queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            else:
                self.dropped_frames += 1
        self._output_queue.put_nowait(frame)

    def _resolve_input_device(self) -> Optional[str]:
        if not self._preferred_device:
            return None
        target = self._preferred_device.lower()
        match = next((name for name in self.list_input_devices() if target in name.lower()), None)
        if match is None:
            raise SpeechEngineError(
                "audio-capture",
                f"MIC_DEVICE '{self._preferred_device}' was not found among input devices.",
            )
        return match

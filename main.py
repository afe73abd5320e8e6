from __future__ import annotations

import asyncio
import logging
import os
import sys
from contextlib import suppress
from typing import Final, Optional

from dotenv import load_dotenv
from PyQt6.QtWidgets import QApplication
from qasync import QEventLoop

from audio_listener import MicrophoneListener
from config_utils import TranslatorSettings, read_int_env
from debounce import DebounceParameters
from latency_history import LatencyHistory
from overlay_ui import TranslatorWindow
from pipeline_controller import PipelineController, speech_error_hint
from settings_store import SettingsStore
from speech_engine import RealtimeSpeechEngine
from speech_input import AudioFrame, SpeechEngineError
from translation_client import ResponsesTranslationClient

APP_VERSION: Final[str] = "5.1"


class TranslatorApp:
    """Wires microphone, speech engine, pipeline and window on one event loop."""

    def __init__(
        self,
        window: TranslatorWindow,
        settings: TranslatorSettings,
        store: SettingsStore,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.window = window
        self.settings = settings
        self.store = store
        self.loop = loop
        self.controller: Optional[PipelineController] = None
        self.engine: Optional[RealtimeSpeechEngine] = None
        self.listener: Optional[MicrophoneListener] = None
        self.frames: asyncio.Queue[AudioFrame] = asyncio.Queue(maxsize=read_int_env("AUDIO_QUEUE_MAXSIZE", 64))
        self._pump_task: Optional[asyncio.Task[None]] = None
        self._toggle_task: Optional[asyncio.Task[None]] = None
        self.history = LatencyHistory(store)
        self.parameters = DebounceParameters(store)

        self.window.start_requested.connect(lambda language: self._schedule(self.start(language)))
        self.window.stop_requested.connect(lambda: self._schedule(self.stop()))
        self.window.reset_requested.connect(self._on_reset_requested)
        self.window.font_size_changed.connect(self.store.set_font_size)

    def show_first_run_hints(self) -> None:
        if self.store.mark_version_seen(APP_VERSION):
            logging.info("app_version_seen version=%s", APP_VERSION)
        onboarding = self.store.onboarding_state()
        if not onboarding.should_show:
            self.window.set_status("Idle")
            return
        if self.settings.api_key:
            onboarding.completed = True
        else:
            onboarding.skip_count += 1
            self.window.set_status("Set OPENAI_API_KEY in .env, then press Start.")
        self.store.save_onboarding_state(onboarding)

    async def start(self, language: str) -> None:
        try:
            self._ensure_services()
            assert self.controller is not None and self.engine is not None and self.listener is not None
            self.controller.start(language)
            self.window.set_listening(True)
            await self.engine.start(language)
            self.listener.start()
        except SpeechEngineError as exc:
            logging.warning("speech_start_failed code=%s error=%s", exc.code, exc)
            if self.controller is not None:
                self.controller.stop()
            self.window.set_status(f"Startup error: {exc}")
            self.window.show_error(speech_error_hint(exc.code))
            await self._stop_input()
            self.window.set_listening(False)
            return
        except Exception as exc:  # noqa: BLE001 - service startup boundary
            self.window.set_status(f"Startup error: {exc}")
            if self.controller is not None:
                self.controller.stop()
            await self._stop_input()
            self.window.set_listening(False)
            return
        self._pump_task = asyncio.create_task(self.engine.pump(self.frames), name="speech-audio-pump")

    async def stop(self) -> None:
        if self.controller is not None:
            self.controller.stop()
        await self._stop_input()
        self.window.set_listening(False)

    def shutdown_sync(self) -> None:
        if self.listener is not None:
            self.listener.stop()
        if self.controller is not None:
            self.controller.stop()
        for task in (self._toggle_task, self._pump_task):
            if task and not task.done():
                task.cancel()

    def _ensure_services(self) -> None:
        if self.controller is None:
            client = ResponsesTranslationClient(
                api_key=self.settings.api_key,
                model=self.settings.model,
                fallback_model=self.settings.fallback_model,
                verbosity=self.settings.verbosity,
                reasoning_effort=self.settings.reasoning_effort,
            )
            self.controller = PipelineController(
                self.window,
                client,
                history=self.history,
                parameters=self.parameters,
                request_timeout_s=self.settings.request_timeout_s,
                on_stopped=lambda: self._schedule(self.stop()),
            )
        if self.engine is None:
            self.engine = RealtimeSpeechEngine(
                on_result=self.controller.on_speech_result,
                on_error=self.controller.on_speech_error,
                api_key=self.settings.api_key,
            )
        if self.listener is None:
            self.listener = MicrophoneListener(
                loop=self.loop,
                output_queue=self.frames,
                preferred_device=self.settings.mic_device,
            )

    async def _stop_input(self) -> None:
        if self.listener is not None:
            self.listener.stop()
        if self._pump_task is not None:
            self._pump_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._pump_task
            self._pump_task = None
        if self.engine is not None:
            await self.engine.stop()
        while not self.frames.empty():
            try:
                self.frames.get_nowait()
            except asyncio.QueueEmpty:
                break

    def _on_reset_requested(self) -> None:
        if self.controller is not None:
            self.controller.reset()
        else:
            self.window.clear()
            self.window.set_status("Idle")

    def _schedule(self, coro) -> None:
        if self._toggle_task and not self._toggle_task.done():
            self._toggle_task.cancel()
        task = asyncio.create_task(coro, name="toggle-listening")
        self._toggle_task = task

        def _finalize(done_task: asyncio.Task[None]) -> None:
            if self._toggle_task is done_task:
                self._toggle_task = None
            try:
                done_task.result()
            except asyncio.CancelledError:
                pass
            except Exception as exc:  # noqa: BLE001 - task boundary
                self.window.set_status(f"Toggle error: {exc}")

        task.add_done_callback(_finalize)


def main() -> None:
    load_dotenv()
    log_level_name = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(message)s")

    settings = TranslatorSettings.from_env()
    store = SettingsStore(settings.settings_path)

    app = QApplication(sys.argv)
    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)

    window = TranslatorWindow(font_size=store.font_size())
    translator = TranslatorApp(window, settings, store, loop)
    app.aboutToQuit.connect(translator.shutdown_sync)
    translator.show_first_run_hints()
    window.show()

    with loop:
        loop.run_forever()


if __name__ == "__main__":
    main()

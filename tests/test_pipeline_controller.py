from __future__ import annotations

import asyncio
import unittest

from helpers import ManualTimer, RecordingSink, ScriptedStreamClient, completed_event, delta_event
from pipeline_controller import TRANSLATION_ERROR_PLACEHOLDER, PipelineController, PipelineState
from speech_input import SpeechEngineError, SpeechHypothesis, SpeechResultEvent
from translation_client import TranslationTransportError
from window_policy import WindowMode


def event(*items: tuple[str, bool], start_index: int = 0) -> SpeechResultEvent:
    return SpeechResultEvent(tuple(SpeechHypothesis(text, final) for text, final in items), start_index)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


async def settle(controller: PipelineController) -> None:
    tasks = [r.task for r in controller.recent_submissions if r.task is not None]
    await asyncio.gather(*tasks, return_exceptions=True)


class PipelineControllerTests(unittest.TestCase):
    def make_controller(self, client: ScriptedStreamClient) -> tuple[PipelineController, RecordingSink, ManualTimer]:
        sink = RecordingSink()
        timer = ManualTimer()
        self.clock = FakeClock()
        controller = PipelineController(sink, client, timer=timer, clock=self.clock)
        return controller, sink, timer

    def test_finalized_sentence_is_submitted_once_in_final_mode(self) -> None:
        client = ScriptedStreamClient([delta_event("Hello."), completed_event()])
        controller, sink, timer = self.make_controller(client)

        async def scenario() -> None:
            controller.start("ja")
            controller.on_speech_result(event(("こんにち", False)))
            controller.on_speech_result(event(("こんにちは", False)))
            self.clock.now += 0.5
            controller.on_speech_result(event(("こんにちは、", True)))
            self.assertEqual(controller.state, PipelineState.DEBOUNCING)
            timer.fire()
            self.assertEqual(controller.state, PipelineState.STREAMING)
            await settle(controller)

        asyncio.run(scenario())
        self.assertEqual(controller.submission_count, 1)
        request = controller.recent_submissions[0]
        self.assertEqual(request.mode, WindowMode.FINAL)
        self.assertEqual(request.submitted_text, "こんにちは、。")
        self.assertEqual(client.calls, [("こんにちは、。", "ja")])
        self.assertEqual(sink.original[-1], "こんにちは、。")
        self.assertEqual(sink.translations, ["Hello."])
        self.assertEqual(sink.resets, 1)
        self.assertEqual(timer.delays, [346, 346, 346])
        self.assertEqual([s.finalization_delay_ms for s in controller.history.samples("ja")], [500.0])
        self.assertEqual(controller.state, PipelineState.LISTENING)

    def test_identical_fast_updates_submit_once(self) -> None:
        client = ScriptedStreamClient([delta_event("The meeting"), completed_event()])
        controller, _sink, timer = self.make_controller(client)

        async def scenario() -> None:
            controller.start("en")
            for _ in range(200):
                controller.on_speech_result(event(("the meeting starts at", False)))
                timer.fire()
            await settle(controller)

        asyncio.run(scenario())
        self.assertEqual(controller.submission_count, 1)
        self.assertEqual(controller.recent_submissions[0].mode, WindowMode.FAST)
        self.assertEqual(len(client.calls), 1)

    def test_newer_window_supersedes_request_in_flight(self) -> None:
        gate = asyncio.Event()
        client = ScriptedStreamClient([delta_event("x"), completed_event()], gate=gate)
        controller, sink, timer = self.make_controller(client)

        async def scenario() -> None:
            controller.start("en")
            controller.on_speech_result(event(("good", False)))
            timer.fire()
            await asyncio.sleep(0)
            controller.on_speech_result(event(("good morning", False)))
            timer.fire()
            first, second = controller.recent_submissions
            self.assertFalse(first.active)
            self.assertTrue(second.active)
            gate.set()
            await settle(controller)

        asyncio.run(scenario())
        first, second = controller.recent_submissions
        self.assertEqual(first.increments, 0)
        self.assertEqual(second.increments, 1)
        self.assertEqual(sink.translations, ["x"])

    def test_stop_cancels_without_clearing_display(self) -> None:
        gate = asyncio.Event()
        client = ScriptedStreamClient([delta_event("never"), completed_event()], gate=gate)
        controller, sink, timer = self.make_controller(client)

        async def scenario() -> None:
            controller.start("en")
            controller.on_speech_result(event(("hello", False)))
            timer.fire()
            await asyncio.sleep(0)
            clears_before = sink.clears
            controller.stop()
            self.assertEqual(sink.clears, clears_before)
            gate.set()
            await settle(controller)

        asyncio.run(scenario())
        self.assertEqual(controller.state, PipelineState.IDLE)
        self.assertEqual(sink.translations, [])
        self.assertEqual(sink.errors, [])
        self.assertEqual(sink.busy[-1], False)
        self.assertEqual(sink.statuses[-1], "Stopped.")
        self.assertFalse(timer.armed)

        controller.reset()
        self.assertEqual(controller.transcript.text, "")
        self.assertEqual(sink.statuses[-1], "Idle")

    def test_updates_are_ignored_when_not_listening(self) -> None:
        controller, sink, timer = self.make_controller(ScriptedStreamClient())
        controller.on_speech_result(event(("hello", False)))
        self.assertEqual(sink.original, [])
        self.assertFalse(timer.armed)

    def test_unsupported_language_is_rejected(self) -> None:
        controller, _sink, _timer = self.make_controller(ScriptedStreamClient())
        with self.assertRaises(ValueError):
            controller.start("fr")

    def test_transport_error_shows_placeholder(self) -> None:
        client = ScriptedStreamClient(error=TranslationTransportError("Invalid API key", 401))
        controller, sink, timer = self.make_controller(client)

        async def scenario() -> None:
            controller.start("en")
            controller.on_speech_result(event(("hello", False)))
            timer.fire()
            with self.assertLogs(level="WARNING"):
                await settle(controller)

        asyncio.run(scenario())
        self.assertEqual(sink.errors, ["Invalid API key"])
        self.assertEqual(sink.translations, [TRANSLATION_ERROR_PLACEHOLDER])
        self.assertEqual(controller.state, PipelineState.LISTENING)

    def test_fatal_speech_error_stops_listening(self) -> None:
        stopped: list[bool] = []
        sink = RecordingSink()
        controller = PipelineController(
            sink, ScriptedStreamClient(), timer=ManualTimer(), on_stopped=lambda: stopped.append(True)
        )
        controller.start("ja")
        with self.assertLogs(level="WARNING"):
            controller.on_speech_error(SpeechEngineError("not-allowed", "permission denied"))
        self.assertFalse(controller.running)
        self.assertEqual(stopped, [True])
        self.assertEqual(sink.statuses[-1], "Speech input stopped: permission denied")
        self.assertIn("Microphone permission denied", sink.errors[-1])

    def test_transient_speech_error_keeps_listening(self) -> None:
        controller, sink, _timer = self.make_controller(ScriptedStreamClient())
        controller.start("ja")
        controller.on_speech_error(SpeechEngineError("no-speech"))
        self.assertTrue(controller.running)
        self.assertEqual(sink.errors, [])

    def test_finalization_latency_retunes_debounce(self) -> None:
        controller, _sink, timer = self.make_controller(ScriptedStreamClient())
        controller.start("ja")
        with self.assertLogs(level="INFO") as logs:
            for position in range(30):
                controller.on_speech_result(event((f"part {position}", False), start_index=position))
                self.clock.now += 0.6
                controller.on_speech_result(event((f"part {position}", True), start_index=position))
        self.assertTrue(any("debounce_tuned" in line for line in logs.output))
        self.assertEqual(controller.parameters.delay_ms("ja"), 600)
        self.assertEqual(controller.history.count("ja"), 0)
        controller.on_speech_result(event(("next", False), start_index=30))
        self.assertEqual(timer.delays[-1], 600)


if __name__ == "__main__":
    unittest.main()

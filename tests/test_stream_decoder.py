from __future__ import annotations

import asyncio
import unittest

from helpers import completed_event, delta_event, sse_event
from stream_decoder import IncrementAccumulator, StreamDecoder
from window_policy import WindowMode

STREAM = b"".join(
    [
        sse_event("response.created", {"type": "response.created"}),
        delta_event("Good "),
        delta_event("morning, "),
        delta_event("こんにちは"),
        delta_event("世界"),
        completed_event(),
    ]
)
EXPECTED = ["Good ", "morning, ", "こんにちは", "世界"]


def decode_in_chunks(stream: bytes, size: int) -> list[str]:
    decoder = StreamDecoder()
    out: list[str] = []
    for start in range(0, len(stream), size):
        out.extend(decoder.feed(stream[start : start + size]))
    decoder.finish()
    return out


class StreamDecoderTests(unittest.TestCase):
    def test_single_chunk(self) -> None:
        decoder = StreamDecoder()
        self.assertEqual(decoder.feed(STREAM), EXPECTED)
        self.assertTrue(decoder.completed)

    def test_chunk_boundaries_do_not_change_output(self) -> None:
        # Sizes 1..7 split blocks mid-field and multibyte characters mid-sequence.
        for size in (1, 2, 3, 5, 7, 64):
            with self.subTest(size=size):
                self.assertEqual(decode_in_chunks(STREAM, size), EXPECTED)

    def test_malformed_block_is_skipped(self) -> None:
        stream = sse_event("response.output_text.delta", "{broken json") + b"".join(
            delta_event(str(i)) for i in range(5)
        )
        decoder = StreamDecoder()
        self.assertEqual(decoder.feed(stream), ["0", "1", "2", "3", "4"])

    def test_non_delta_events_and_bad_payloads_are_ignored(self) -> None:
        stream = b"".join(
            [
                sse_event("response.in_progress", {"delta": "nope"}),
                sse_event("response.output_text.delta", [1, 2, 3]),
                sse_event("response.output_text.delta", {"delta": 42}),
                b"data: orphan\n\n",
                delta_event("ok"),
            ]
        )
        self.assertEqual(StreamDecoder().feed(stream), ["ok"])

    def test_completion_discards_remaining_carry(self) -> None:
        decoder = StreamDecoder()
        out = decoder.feed(delta_event("a") + completed_event() + delta_event("late") + b"event: partial")
        self.assertEqual(out, ["a"])
        self.assertEqual(decoder.feed(delta_event("after")), [])
        with self.assertNoLogs(level="WARNING"):
            decoder.finish()

    def test_leftover_partial_block_is_logged(self) -> None:
        decoder = StreamDecoder()
        decoder.feed(delta_event("a") + b"event: response.output_text.delta\ndata: {\"del")
        with self.assertLogs(level="WARNING") as logs:
            decoder.finish()
        self.assertIn("stream_decoder_leftover", logs.output[0])

    def test_crlf_lines_are_accepted(self) -> None:
        stream = b'event: response.output_text.delta\r\ndata: {"delta": "hi"}\r\n\n'
        self.assertEqual(StreamDecoder().feed(stream), ["hi"])

    def test_crlf_block_separators_split_across_chunks(self) -> None:
        stream = STREAM.replace(b"\n", b"\r\n")
        self.assertEqual(StreamDecoder().feed(stream), EXPECTED)
        for size in (1, 2, 3):
            with self.subTest(size=size):
                self.assertEqual(decode_in_chunks(stream, size), EXPECTED)

    def test_async_iteration_stops_at_completion(self) -> None:
        async def chunks():
            yield STREAM[:10]
            yield STREAM[10:]
            yield delta_event("never")

        async def collect() -> list[str]:
            return [delta async for delta in StreamDecoder().iter_increments(chunks())]

        self.assertEqual(asyncio.run(collect()), EXPECTED)


class IncrementAccumulatorTests(unittest.TestCase):
    def test_fast_mode_appends_without_reset(self) -> None:
        shown: list[str] = []
        resets: list[bool] = []
        accumulator = IncrementAccumulator(WindowMode.FAST, shown.append, lambda: resets.append(True))
        accumulator.add("Hel")
        accumulator.add("lo")
        self.assertEqual(shown, ["Hel", "Hello"])
        self.assertEqual(resets, [])
        self.assertEqual(accumulator.received, 2)

    def test_final_mode_resets_once_before_first_increment(self) -> None:
        events: list[str] = []
        accumulator = IncrementAccumulator(
            WindowMode.FINAL,
            lambda text: events.append(f"text:{text}"),
            lambda: events.append("reset"),
        )
        accumulator.add("")
        accumulator.add("Good")
        accumulator.add(" day")
        self.assertEqual(events, ["reset", "text:Good", "text:Good day"])
        self.assertEqual(accumulator.text, "Good day")


if __name__ == "__main__":
    unittest.main()

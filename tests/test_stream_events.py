"""Tests for the reasoning line parser and the Ollama chunk source."""

from __future__ import annotations

import json
import unittest
from typing import Any

from chat_reconciler.reasoning import ReasoningDelta, ReasoningEnd, ReasoningStart
from chat_reconciler.stream_events import (
    OllamaReasoningSource,
    ReasoningLineParser,
    extract_chunk_field,
)


def _line(payload: dict[str, Any]) -> str:
    return "r:" + json.dumps(payload) + "\n"


class _Clock:
    def __init__(self, *ticks: float) -> None:
        self._ticks = list(ticks)

    def __call__(self) -> float:
        return self._ticks.pop(0)


class _FakeMessage:
    def __init__(self, content: str | None = None, thinking: str | None = None) -> None:
        self.content = content
        self.thinking = thinking


class _FakeChunk:
    def __init__(self, content: str | None = None, thinking: str | None = None) -> None:
        self.message = _FakeMessage(content, thinking)


class ReasoningLineParserTests(unittest.TestCase):
    def setUp(self) -> None:
        self.parser = ReasoningLineParser()
        self.events: list[Any] = []
        self.parser.subscribe(self.events.append)

    def test_full_sequence_and_passthrough(self) -> None:
        stream = (
            _line({"type": "reasoning-start"})
            + _line({"type": "reasoning-delta", "content": "Let me "})
            + _line({"type": "reasoning-delta", "content": "think"})
            + _line({"type": "reasoning-end", "duration": 1.5})
            + "0:\"hello\"\n"
        )
        passthrough = self.parser.feed(stream)

        self.assertEqual(passthrough, ['0:"hello"'])
        self.assertIsInstance(self.events[0], ReasoningStart)
        self.assertEqual(
            self.events[1:3],
            [ReasoningDelta("Let me ", 1), ReasoningDelta("think", 2)],
        )
        self.assertEqual(self.events[3], ReasoningEnd(1.5, "Let me think"))

    def test_lines_split_across_chunks(self) -> None:
        line = _line({"type": "reasoning-delta", "content": "abc"})
        self.assertEqual(self.parser.feed(line[:5]), [])
        self.assertEqual(self.events, [])
        self.parser.feed(line[5:])
        self.assertEqual(self.events, [ReasoningDelta("abc", 1)])

    def test_total_reasoning_overrides_accumulation(self) -> None:
        self.parser.feed(_line({"type": "reasoning-delta", "content": "partial"}))
        self.parser.feed(
            _line({"type": "reasoning-end", "duration": 2, "totalReasoning": "full"})
        )
        self.assertEqual(self.events[-1], ReasoningEnd(2.0, "full"))

    def test_invalid_json_is_logged_and_dropped(self) -> None:
        with self.assertLogs("chat_reconciler.stream_events", level="WARNING"):
            self.assertEqual(self.parser.feed("r:{oops\n"), [])
        self.assertEqual(self.events, [])

    def test_close_flushes_trailing_line(self) -> None:
        self.assertEqual(self.parser.feed("tail without newline"), [])
        self.assertEqual(self.parser.close(), ["tail without newline"])
        self.assertEqual(self.parser.close(), [])

    def test_failing_listener_does_not_block_others(self) -> None:
        def _boom(event: Any) -> None:
            raise RuntimeError("listener failed")

        parser = ReasoningLineParser()
        received: list[Any] = []
        parser.subscribe(_boom)
        parser.subscribe(received.append)
        with self.assertLogs("chat_reconciler.stream_events", level="ERROR"):
            parser.feed(_line({"type": "reasoning-start"}))
        self.assertEqual(len(received), 1)

    def test_unsubscribe(self) -> None:
        parser = ReasoningLineParser()
        received: list[Any] = []
        unsubscribe = parser.subscribe(received.append)
        unsubscribe()
        parser.feed(_line({"type": "reasoning-start"}))
        self.assertEqual(received, [])


class OllamaReasoningSourceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.source = OllamaReasoningSource(clock=_Clock(10.0, 12.5))
        self.events: list[Any] = []
        self.source.subscribe(self.events.append)

    def test_thinking_then_content(self) -> None:
        self.assertEqual(self.source.observe(_FakeChunk(thinking="hmm ")), "")
        self.assertTrue(self.source.in_reasoning)
        self.source.observe({"message": {"thinking": "ok"}})
        self.assertEqual(self.source.observe(_FakeChunk(content="Answer")), "Answer")

        self.assertFalse(self.source.in_reasoning)
        self.assertIsInstance(self.events[0], ReasoningStart)
        self.assertEqual(self.events[-1], ReasoningEnd(2.5, "hmm ok"))

    def test_done_chunk_closes_reasoning(self) -> None:
        self.source.observe(_FakeChunk(thinking="x"))
        self.source.observe({"message": {"content": ""}, "done": True})
        self.assertEqual(self.events[-1], ReasoningEnd(2.5, "x"))

    def test_plain_content_emits_nothing(self) -> None:
        self.source.observe(_FakeChunk(content="hello"))
        self.source.finish()
        self.assertEqual(self.events, [])

    async def test_relay_yields_content_and_finishes(self) -> None:
        async def _chunks():
            yield _FakeChunk(thinking="plan")
            yield _FakeChunk(content="A")
            yield _FakeChunk(content="B")

        tokens = [token async for token in self.source.relay(_chunks())]
        self.assertEqual(tokens, ["A", "B"])
        self.assertEqual(
            [type(event) for event in self.events],
            [ReasoningStart, ReasoningDelta, ReasoningEnd],
        )


class ExtractChunkFieldTests(unittest.TestCase):
    def test_object_and_dict_shapes(self) -> None:
        self.assertEqual(extract_chunk_field(_FakeChunk(content="a"), "content"), "a")
        self.assertEqual(extract_chunk_field({"message": {"content": "b"}}, "content"), "b")
        self.assertTrue(extract_chunk_field({"done": True}, "done"))
        self.assertIsNone(extract_chunk_field("junk", "content"))


if __name__ == "__main__":
    unittest.main()

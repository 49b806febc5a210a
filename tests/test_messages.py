"""Tests for the message data model and pure patch helpers."""

from __future__ import annotations

import unittest

from chat_reconciler.messages import (
    Attachment,
    Message,
    MessagePart,
    patch_message,
    sync_text_part,
    with_attachments,
    with_content,
    with_final_reasoning,
    with_reasoning_part,
    without_reasoning_part,
)


def _assistant(message_id: str = "a1", content: str = "answer") -> Message:
    return Message(
        id=message_id,
        role="assistant",
        content=content,
        parts=[MessagePart(type="text", text=content)],
    )


class MessageHelperTests(unittest.TestCase):
    """Patches return new values and keep the part invariants."""

    def test_reasoning_part_is_prepended_once(self) -> None:
        message = with_reasoning_part(_assistant(), "step one")
        message = with_reasoning_part(message, "step one two")

        self.assertEqual([part.type for part in message.parts], ["reasoning", "text"])
        self.assertEqual(message.reasoning_part().text, "step one two")

    def test_patch_does_not_mutate_input(self) -> None:
        original = _assistant()
        with_reasoning_part(original, "thinking")
        self.assertIsNone(original.reasoning_part())

    def test_final_reasoning_sets_top_level_mirror(self) -> None:
        message = with_final_reasoning(_assistant(), "done thinking", 1.5)
        self.assertEqual(message.reasoning, "done thinking")
        self.assertEqual(message.reasoning_duration, 1.5)
        self.assertEqual(message.reasoning_part().duration, 1.5)

    def test_without_reasoning_part_drops_it(self) -> None:
        message = without_reasoning_part(with_reasoning_part(_assistant(), "x"))
        self.assertIsNone(message.reasoning_part())

    def test_patch_message_unknown_id_is_noop(self) -> None:
        messages = [_assistant()]
        patched = patch_message(messages, "missing", lambda m: with_content(m, "x"))
        self.assertEqual(patched, messages)
        self.assertIsNot(patched, messages)

    def test_with_content_keeps_text_part_converged(self) -> None:
        message = with_content(_assistant(), "new answer")
        self.assertEqual(message.content, "new answer")
        self.assertEqual(message.text_part().text, "new answer")

    def test_sync_text_part_converges_diverged_message(self) -> None:
        message = Message(
            id="a1",
            role="assistant",
            content="final",
            parts=[MessagePart(type="text", text="fin")],
        )
        self.assertEqual(sync_text_part(message).text_part().text, "final")

    def test_with_attachments_replaces_part_in_place(self) -> None:
        message = Message(
            id="u1",
            role="user",
            content="see file",
            parts=[
                MessagePart(type="text", text="see file"),
                MessagePart(type="file_attachments", attachments=[Attachment("a.txt")]),
            ],
        )
        updated = with_attachments(message, [Attachment("a.txt", content="body")])
        self.assertEqual(len(updated.parts), 2)
        self.assertEqual(updated.attachments()[0].content, "body")

    def test_dict_round_trip_keeps_attempts(self) -> None:
        first = _assistant(content="one")
        second = _assistant(content="two")
        message = Message(
            id="a1",
            role="assistant",
            content="two",
            parts=second.parts,
            attempts=[first, second],
            current_attempt_index=1,
            reasoning="why",
            reasoning_duration=0.5,
        )
        restored = Message.from_dict(message.to_dict())
        self.assertEqual(restored, message)

    def test_from_dict_rejects_unknown_role(self) -> None:
        with self.assertRaises(ValueError):
            Message.from_dict({"id": "x", "role": "tool"})


if __name__ == "__main__":
    unittest.main()

"""Message data model shared by the transport hook and the reconciliation engines.

Messages are treated as values: every helper in this module returns a new
``Message`` (or a new list) instead of mutating its argument, so patches can be
applied through a read-modify-write ``set_messages`` updater without lost
updates from interleaved callbacks.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Literal

Role = Literal["user", "assistant", "system"]
PartType = Literal["text", "reasoning", "file_attachments", "artifact_references"]

VALID_ROLES: frozenset[str] = frozenset({"user", "assistant", "system"})
VALID_PART_TYPES: frozenset[str] = frozenset(
    {"text", "reasoning", "file_attachments", "artifact_references"}
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Attachment:
    """A file attached to a message; ``content`` may not be resident in memory."""

    file_name: str
    mime_type: str = ""
    file_url: str = ""
    content: str | None = None
    extracted_text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "file_url": self.file_url,
            "content": self.content,
            "extracted_text": self.extracted_text,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Attachment:
        return cls(
            file_name=str(payload.get("file_name", "")),
            mime_type=str(payload.get("mime_type", "") or ""),
            file_url=str(payload.get("file_url", "") or ""),
            content=payload.get("content"),
            extracted_text=payload.get("extracted_text"),
        )


@dataclass
class MessagePart:
    """A typed fragment of a message."""

    type: PartType
    text: str = ""
    attachments: list[Attachment] = field(default_factory=list)
    artifact_ids: list[str] = field(default_factory=list)
    duration: float | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.type in ("text", "reasoning"):
            payload["text"] = self.text
        if self.type == "reasoning" and self.duration is not None:
            payload["duration"] = self.duration
        if self.type == "file_attachments":
            payload["attachments"] = [item.to_dict() for item in self.attachments]
        if self.type == "artifact_references":
            payload["artifact_ids"] = list(self.artifact_ids)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> MessagePart:
        part_type = str(payload.get("type", "text"))
        if part_type not in VALID_PART_TYPES:
            raise ValueError(f"Unsupported message part type {part_type!r}.")
        raw_duration = payload.get("duration")
        return cls(
            type=part_type,  # type: ignore[arg-type]
            text=str(payload.get("text", "") or ""),
            attachments=[
                Attachment.from_dict(item)
                for item in payload.get("attachments", []) or []
                if isinstance(item, dict)
            ],
            artifact_ids=[str(item) for item in payload.get("artifact_ids", []) or []],
            duration=float(raw_duration) if raw_duration is not None else None,
        )


@dataclass
class Message:
    """A chat message as exposed by the transport hook.

    ``attempts`` holds alternate full snapshots produced by regeneration,
    oldest first. When non-empty, the visible fields mirror
    ``attempts[current_attempt_index]``.
    """

    id: str
    role: Role
    content: str = ""
    parts: list[MessagePart] = field(default_factory=list)
    reasoning: str | None = None
    reasoning_duration: float | None = None
    created_at: datetime = field(default_factory=_utcnow)
    attempts: list[Message] = field(default_factory=list)
    current_attempt_index: int | None = None

    def reasoning_part(self) -> MessagePart | None:
        """Return the reasoning part, if any."""
        for part in self.parts:
            if part.type == "reasoning":
                return part
        return None

    def text_part(self) -> MessagePart | None:
        """Return the first text part, if any."""
        for part in self.parts:
            if part.type == "text":
                return part
        return None

    def attachments(self) -> list[Attachment]:
        """Return every attachment carried by ``file_attachments`` parts."""
        found: list[Attachment] = []
        for part in self.parts:
            if part.type == "file_attachments":
                found.extend(part.attachments)
        return found

    def snapshot(self) -> Message:
        """Return a copy without attempt history, suitable as an attempt record."""
        return replace(
            self,
            parts=[_copy_part(part) for part in self.parts],
            attempts=[],
            current_attempt_index=None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "parts": [part.to_dict() for part in self.parts],
            "created_at": self.created_at.isoformat(),
        }
        if self.reasoning is not None:
            payload["reasoning"] = self.reasoning
        if self.reasoning_duration is not None:
            payload["reasoning_duration"] = self.reasoning_duration
        if self.attempts:
            payload["attempts"] = [attempt.to_dict() for attempt in self.attempts]
            payload["current_attempt_index"] = self.current_attempt_index
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Message:
        role = str(payload.get("role", "")).strip().lower()
        if role not in VALID_ROLES:
            raise ValueError(f"Unsupported message role {role!r}.")
        raw_created = payload.get("created_at")
        created_at = (
            datetime.fromisoformat(raw_created)
            if isinstance(raw_created, str) and raw_created
            else _utcnow()
        )
        raw_index = payload.get("current_attempt_index")
        raw_duration = payload.get("reasoning_duration")
        return cls(
            id=str(payload["id"]),
            role=role,  # type: ignore[arg-type]
            content=str(payload.get("content", "") or ""),
            parts=[
                MessagePart.from_dict(item)
                for item in payload.get("parts", []) or []
                if isinstance(item, dict)
            ],
            reasoning=payload.get("reasoning"),
            reasoning_duration=float(raw_duration) if raw_duration is not None else None,
            created_at=created_at,
            attempts=[
                cls.from_dict(item)
                for item in payload.get("attempts", []) or []
                if isinstance(item, dict)
            ],
            current_attempt_index=int(raw_index) if raw_index is not None else None,
        )


def _copy_part(part: MessagePart) -> MessagePart:
    return replace(
        part,
        attachments=[replace(item) for item in part.attachments],
        artifact_ids=list(part.artifact_ids),
    )


def latest_message(messages: Sequence[Message]) -> Message | None:
    """Return the newest message or ``None`` for an empty list."""
    return messages[-1] if messages else None


def find_index(messages: Sequence[Message], message_id: str) -> int:
    """Return the index of ``message_id`` or ``-1``."""
    for index, message in enumerate(messages):
        if message.id == message_id:
            return index
    return -1


def patch_message(
    messages: Sequence[Message],
    message_id: str,
    patch: Callable[[Message], Message],
) -> list[Message]:
    """Return a new list with ``patch`` applied to the message with ``message_id``.

    Unknown ids leave the list unchanged (the message may have been removed by
    the transport in the meantime).
    """
    updated = list(messages)
    index = find_index(updated, message_id)
    if index >= 0:
        updated[index] = patch(updated[index])
    return updated


def with_reasoning_part(
    message: Message, text: str, duration: float | None = None
) -> Message:
    """Replace the reasoning part's text, or prepend a new reasoning part.

    The replacement is a full-state write, so applying the same accumulated
    text twice yields the same message.
    """
    parts: list[MessagePart] = []
    replaced = False
    for part in message.parts:
        if part.type == "reasoning":
            if replaced:
                continue
            parts.append(
                replace(
                    part,
                    text=text,
                    duration=duration if duration is not None else part.duration,
                )
            )
            replaced = True
        else:
            parts.append(part)
    if not replaced:
        parts.insert(0, MessagePart(type="reasoning", text=text, duration=duration))
    return replace(message, parts=parts)


def without_reasoning_part(message: Message) -> Message:
    """Drop every reasoning part from the message."""
    return replace(message, parts=[p for p in message.parts if p.type != "reasoning"])


def with_final_reasoning(message: Message, text: str, duration: float) -> Message:
    """Write the reasoning part and the top-level ``reasoning`` mirror."""
    patched = with_reasoning_part(message, text, duration)
    return replace(patched, reasoning=text, reasoning_duration=duration)


def with_content(message: Message, content: str) -> Message:
    """Set ``content`` and keep the text part converged with it."""
    parts: list[MessagePart] = []
    synced = False
    for part in message.parts:
        if part.type == "text" and not synced:
            parts.append(replace(part, text=content))
            synced = True
        else:
            parts.append(part)
    if not synced:
        parts.append(MessagePart(type="text", text=content))
    return replace(message, content=content, parts=parts)


def with_attachments(message: Message, attachments: list[Attachment]) -> Message:
    """Replace the ``file_attachments`` part in place, or append one."""
    parts: list[MessagePart] = []
    written = False
    for part in message.parts:
        if part.type != "file_attachments":
            parts.append(part)
        elif not written:
            parts.append(replace(part, attachments=list(attachments)))
            written = True
    if not written and attachments:
        parts.append(MessagePart(type="file_attachments", attachments=list(attachments)))
    return replace(message, parts=parts)


def sync_text_part(message: Message) -> Message:
    """Converge the text part onto ``content`` once streaming has finished."""
    text_part = message.text_part()
    if text_part is not None and text_part.text == message.content:
        return message
    return with_content(message, message.content)

"""Regeneration and per-message attempt history.

Regenerating an assistant message keeps every answer: the message slot
carries ``attempts`` (oldest first, the pre-regeneration message at index 0)
and its visible fields mirror ``attempts[current_attempt_index]``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import logging
from typing import TYPE_CHECKING, Any

from .exceptions import RegenerationError
from .interfaces import ACTIVE_STATUSES
from .messages import (
    Attachment,
    Message,
    find_index,
    latest_message,
    patch_message,
    with_attachments,
)
from .task_manager import TaskManager

if TYPE_CHECKING:
    from .interfaces import (
        MessageStorage,
        Notifier,
        TransportHook,
        TransportStatus,
        Unsubscribe,
    )

LOGGER = logging.getLogger(__name__)

_REGENERATE_TASK = "regenerate"


@dataclass(frozen=True)
class PendingRegeneration:
    """An assistant regeneration waiting for its new answer."""

    message_id: str
    original: Message


def with_new_attempt(original: Message, new: Message) -> Message:
    """Fold ``new`` into ``original``'s attempts and make it the visible one."""
    attempts = list(original.attempts) if original.attempts else [original.snapshot()]
    attempts.append(new.snapshot())
    return replace(
        new.snapshot(),
        id=original.id,
        created_at=original.created_at,
        attempts=attempts,
        current_attempt_index=len(attempts) - 1,
    )


def with_attempt_selected(message: Message, index: int) -> Message:
    """Mirror ``attempts[index]`` into the visible fields."""
    if not 0 <= index < len(message.attempts):
        return message
    chosen = message.attempts[index].snapshot()
    return replace(
        message,
        content=chosen.content,
        parts=chosen.parts,
        reasoning=chosen.reasoning,
        reasoning_duration=chosen.reasoning_duration,
        current_attempt_index=index,
    )


def merge_attachments(
    current: list[Attachment], stored: list[Attachment]
) -> list[Attachment]:
    """Fill in resident content for ``current`` from the stored copies by file name."""
    by_name = {item.file_name: item for item in stored}
    merged: list[Attachment] = []
    for attachment in current:
        source = by_name.get(attachment.file_name)
        if source is None:
            merged.append(attachment)
            continue
        merged.append(
            replace(
                attachment,
                content=source.content if source.content is not None else attachment.content,
                extracted_text=source.extracted_text or source.content or attachment.extracted_text,
                file_url=source.file_url or attachment.file_url,
                mime_type=attachment.mime_type or source.mime_type,
            )
        )
    return merged


class RegenerationAttemptTracker:
    """Regenerate messages through the transport and record the attempts."""

    def __init__(
        self,
        transport: TransportHook,
        storage: MessageStorage,
        notifier: Notifier,
    ) -> None:
        self.transport = transport
        self.storage = storage
        self.notifier = notifier
        self._tasks = TaskManager()
        self._pending: PendingRegeneration | None = None
        self._unsubscribe: Unsubscribe | None = None

    def attach(self) -> RegenerationAttemptTracker:
        """Start watching the transport for regenerated answers."""
        if self._unsubscribe is None:
            self._unsubscribe = self.transport.subscribe(self.capture_new_attempt)
        return self

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def regenerating_message_id(self) -> str | None:
        return self._pending.message_id if self._pending is not None else None

    @property
    def is_busy(self) -> bool:
        return self._tasks.is_running(_REGENERATE_TASK)

    async def regenerate(self, message_id: str) -> bool:
        """Regenerate ``message_id``; returns ``False`` on failure or when superseded.

        A regenerate issued while another is in flight stops the transport
        request and cancels the older one first.
        """
        if self._tasks.is_running(_REGENERATE_TASK):
            LOGGER.info(
                "regenerate.superseded",
                extra={"event": "regenerate.superseded", "message_id": message_id},
            )
            self.transport.stop()
            await self._tasks.cancel(_REGENERATE_TASK)

        task = asyncio.create_task(self._regenerate(message_id))
        self._tasks.add(task, name=_REGENERATE_TASK)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return False
        except Exception as exc:  # noqa: BLE001 - converted to a notification.
            LOGGER.error(
                "regenerate.failed",
                extra={
                    "event": "regenerate.failed",
                    "message_id": message_id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            self.notifier.error("Failed to regenerate message.")
            return False
        finally:
            self._tasks.discard(_REGENERATE_TASK, task)

    async def _regenerate(self, message_id: str) -> bool:
        message = self._require(message_id)
        if message.role == "system":
            raise RegenerationError("System messages cannot be regenerated.")
        if self.transport.status in ACTIVE_STATUSES:
            self.transport.stop()

        source = message if message.role == "user" else self._predecessor(message_id)
        attachments = await self._refetch_attachments(source) if source else []
        await self.storage.delete_trailing_messages(message_id)

        # Re-read: the list may have changed while storage was awaited.
        message = self._require(message_id)
        pending: PendingRegeneration | None = None
        if message.role == "user":
            self.transport.set_messages(
                lambda prev: self._truncate_after_user(prev, message_id, attachments)
            )
        else:
            pending = PendingRegeneration(message_id, message)
            self._pending = pending
            self.transport.set_messages(
                lambda prev: prev[: find_index(prev, message_id)]
                if find_index(prev, message_id) >= 0
                else prev
            )

        options: dict[str, Any] = {}
        if attachments:
            options["data"] = {
                "fileAttachments": [item.to_dict() for item in attachments]
            }
        LOGGER.info(
            "regenerate.reload",
            extra={
                "event": "regenerate.reload",
                "message_id": message_id,
                "role": message.role,
                "attachments": len(attachments),
            },
        )
        try:
            await self.transport.reload(options)
        except BaseException:
            if pending is not None and self._pending is pending:
                self._pending = None
                self._restore(pending)
            raise
        return True

    def _require(self, message_id: str) -> Message:
        messages = self.transport.messages
        index = find_index(messages, message_id)
        if index < 0:
            raise RegenerationError(f"Message {message_id!r} is not in the list.")
        return messages[index]

    def _predecessor(self, message_id: str) -> Message | None:
        messages = self.transport.messages
        for candidate in reversed(messages[: find_index(messages, message_id)]):
            if candidate.role == "user":
                return candidate
        return None

    @staticmethod
    def _truncate_after_user(
        messages: list[Message], message_id: str, attachments: list[Attachment]
    ) -> list[Message]:
        index = find_index(messages, message_id)
        if index < 0:
            return messages
        kept = list(messages[: index + 1])
        if attachments:
            kept[index] = with_attachments(kept[index], attachments)
        return kept

    async def _refetch_attachments(self, message: Message) -> list[Attachment]:
        current = message.attachments()
        if not current:
            return []
        try:
            stored = await self.storage.get_file_attachments_by_message_id(message.id)
        except Exception as exc:  # noqa: BLE001 - regenerate without the content.
            LOGGER.warning(
                "regenerate.attachment.fetch_failed",
                extra={
                    "event": "regenerate.attachment.fetch_failed",
                    "message_id": message.id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return current
        return merge_attachments(current, stored)

    def _restore(self, pending: PendingRegeneration) -> None:
        """Put the original answer back when no new attempt arrived."""

        def _update(prev: list[Message]) -> list[Message]:
            if find_index(prev, pending.message_id) >= 0:
                return prev
            latest = latest_message(prev)
            if latest is not None and latest.role == "assistant":
                return prev
            return [*prev, pending.original]

        self.transport.set_messages(_update)

    def capture_new_attempt(
        self, messages: list[Message], status: TransportStatus | None = None
    ) -> None:
        """Watcher: fold a finished regenerated answer into the original message."""
        pending = self._pending
        if pending is None or status in ACTIVE_STATUSES:
            return
        latest = latest_message(messages)
        if (
            latest is None
            or latest.role != "assistant"
            or latest.id == pending.message_id
        ):
            return
        self._pending = None

        def _fold(prev: list[Message]) -> list[Message]:
            newest = latest_message(prev)
            if newest is None or newest.id != latest.id:
                return prev
            return [*prev[:-1], with_new_attempt(pending.original, newest)]

        self.transport.set_messages(_fold)
        LOGGER.info(
            "regenerate.attempt.captured",
            extra={
                "event": "regenerate.attempt.captured",
                "message_id": pending.message_id,
                "attempts": max(len(pending.original.attempts), 1) + 1,
            },
        )

    def select_attempt(self, message_id: str, index: int) -> bool:
        """Show attempt ``index`` of ``message_id``; returns ``False`` if out of range."""
        messages = self.transport.messages
        position = find_index(messages, message_id)
        if position < 0 or not 0 <= index < len(messages[position].attempts):
            return False
        self.transport.set_messages(
            lambda prev: patch_message(
                prev, message_id, lambda message: with_attempt_selected(message, index)
            )
        )
        return True

    def next_attempt(self, message_id: str) -> bool:
        return self._step(message_id, 1)

    def previous_attempt(self, message_id: str) -> bool:
        return self._step(message_id, -1)

    def _step(self, message_id: str, delta: int) -> bool:
        messages = self.transport.messages
        position = find_index(messages, message_id)
        if position < 0 or not messages[position].attempts:
            return False
        message = messages[position]
        current = (
            message.current_attempt_index
            if message.current_attempt_index is not None
            else len(message.attempts) - 1
        )
        return self.select_attempt(message_id, current + delta)

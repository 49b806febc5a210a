"""Rephrase applicator: selection, rewrite round trip, replacement and persistence.

A rephrase runs through ``selecting -> awaiting_result -> replacing ->
persisting -> verifying -> done``. The user may reject while the operation is
still selecting or awaiting the rewrite result; once ``accept`` starts the
operation runs to ``done`` or ``failed``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
import logging
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from .exceptions import RephraseStateError, StorageError
from .messages import patch_message, with_content
from .state import CoordinationGate, RephraseState, StateManager
from .task_manager import TaskManager
from .text_locator import (
    DEFAULT_MARKER_LABEL,
    LocatorPlan,
    Strategy,
    find_rephrase_markers,
    locate,
)

if TYPE_CHECKING:
    from .document import SpanRange
    from .interfaces import (
        DocumentModel,
        MessageStorage,
        Notifier,
        RewriteAction,
        TransportHook,
    )

LOGGER = logging.getLogger(__name__)

_REWRITE_TASK = "rewrite"


@dataclass
class PendingRephrase:
    """The operation currently owned by the applicator.

    ``span`` is a detached copy of the user's selection.
    """

    original_text: str
    target_message_id: str
    span: SpanRange
    action: str = "rephrase"
    target_language: str | None = None
    status: RephraseState = RephraseState.SELECTING
    result: str | None = None
    operation_id: str = field(default_factory=lambda: uuid4().hex)


@dataclass(frozen=True)
class RephraseRecord:
    """A rephrase that reached ``done``; enough to revert it later."""

    message_id: str
    original_text: str
    replacement: str
    strategy: Strategy
    needs_review: bool
    verified: bool
    operation_id: str


class RephraseApplicator:
    """Drive one rephrase operation at a time against a message.

    ``gate`` is shared by every component that must not write message content
    concurrently; a second application while it is held is refused.
    """

    def __init__(
        self,
        transport: TransportHook,
        storage: MessageStorage,
        rewrite_action: RewriteAction,
        document: DocumentModel,
        notifier: Notifier,
        gate: CoordinationGate | None = None,
        *,
        partial_overlap_threshold: float = 0.7,
        min_word_length: int = 2,
        anchor_word_length: int = 4,
        marker_label: str = DEFAULT_MARKER_LABEL,
        verify_persistence: bool = True,
        review_partial_matches: bool = True,
    ) -> None:
        self.transport = transport
        self.storage = storage
        self.rewrite_action = rewrite_action
        self.document = document
        self.notifier = notifier
        self.gate = gate or CoordinationGate("rephrase")
        self.partial_overlap_threshold = partial_overlap_threshold
        self.min_word_length = min_word_length
        self.anchor_word_length = anchor_word_length
        self.marker_label = marker_label
        self.verify_persistence = verify_persistence
        self.review_partial_matches = review_partial_matches
        self.records: list[RephraseRecord] = []
        self._state = StateManager()
        self._tasks = TaskManager()
        self._pending: PendingRephrase | None = None

    @classmethod
    def from_config(
        cls,
        config: dict[str, Any],
        transport: TransportHook,
        storage: MessageStorage,
        rewrite_action: RewriteAction,
        document: DocumentModel,
        notifier: Notifier,
        gate: CoordinationGate | None = None,
    ) -> RephraseApplicator:
        section = config.get("rephrase", {})
        return cls(
            transport,
            storage,
            rewrite_action,
            document,
            notifier,
            gate,
            partial_overlap_threshold=float(section.get("partial_overlap_threshold", 0.7)),
            min_word_length=int(section.get("min_word_length", 2)),
            anchor_word_length=int(section.get("anchor_word_length", 4)),
            marker_label=str(section.get("marker_label", DEFAULT_MARKER_LABEL)),
            verify_persistence=bool(section.get("verify_persistence", True)),
            review_partial_matches=bool(section.get("review_partial_matches", True)),
        )

    @property
    def state(self) -> RephraseState:
        return self._state.state

    @property
    def pending(self) -> PendingRephrase | None:
        return self._pending

    def _move(self, new_state: RephraseState) -> None:
        self._state.transition_to(new_state)
        if self._pending is not None:
            self._pending.status = new_state

    def _locate(self, original: str, content: str, replacement: str) -> LocatorPlan:
        return locate(
            original,
            content,
            replacement,
            threshold=self.partial_overlap_threshold,
            min_word_length=self.min_word_length,
            anchor_word_length=self.anchor_word_length,
            marker_label=self.marker_label,
        )

    def begin(
        self,
        message_id: str,
        original_text: str,
        span: SpanRange,
        action: str = "rephrase",
        target_language: str | None = None,
    ) -> PendingRephrase:
        """Capture a selection; the span is cloned so later re-renders cannot move it."""
        if not original_text.strip():
            raise ValueError("Cannot rephrase an empty selection.")
        self._move(RephraseState.SELECTING)
        self._pending = PendingRephrase(
            original_text=original_text,
            target_message_id=message_id,
            span=self.document.clone_range(span),
            action=action,
            target_language=target_language,
        )
        LOGGER.info(
            "rephrase.begin",
            extra={
                "event": "rephrase.begin",
                "operation_id": self._pending.operation_id,
                "message_id": message_id,
                "chars": len(original_text),
            },
        )
        return self._pending

    async def request(self) -> str | None:
        """Invoke the rewrite action; returns the result or ``None`` on failure."""
        op = self._pending
        if op is None:
            raise RephraseStateError("No rephrase operation is pending.")
        self._move(RephraseState.AWAITING_RESULT)
        op.result = None

        task = asyncio.ensure_future(
            self.rewrite_action(op.action, op.original_text, op.target_language)
        )
        self._tasks.add(task, name=_REWRITE_TASK)
        try:
            result = await task
        except asyncio.CancelledError:
            if self.state is RephraseState.REJECTED:
                return None
            raise
        except Exception as exc:  # noqa: BLE001 - converted to a notification.
            if self.state is not RephraseState.AWAITING_RESULT:
                # Rejected after the rewrite had already failed.
                return None
            LOGGER.error(
                "rephrase.rewrite.failed",
                extra={
                    "event": "rephrase.rewrite.failed",
                    "operation_id": op.operation_id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            self._move(RephraseState.FAILED)
            self.notifier.error(f"Rephrase failed: {exc}")
            return None
        finally:
            self._tasks.discard(_REWRITE_TASK, task)

        if self.state is not RephraseState.AWAITING_RESULT:
            # Rejected while the result was already on its way.
            return None
        if result is None or not result.strip():
            self._move(RephraseState.FAILED)
            self.notifier.error("The rewrite action returned no result.")
            return None
        op.result = result
        return result

    def reject(self) -> bool:
        """Abandon the operation without touching the message."""
        if not self._state.is_cancellable():
            LOGGER.debug(
                "rephrase.reject.ignored",
                extra={"event": "rephrase.reject.ignored", "state": self.state.value},
            )
            return False
        self._tasks.cancel_nowait(_REWRITE_TASK)
        self._move(RephraseState.REJECTED)
        LOGGER.info(
            "rephrase.rejected",
            extra={
                "event": "rephrase.rejected",
                "operation_id": self._pending.operation_id if self._pending else None,
            },
        )
        return True

    async def retry(self) -> str | None:
        """Re-run the rewrite action for the same selection after reject or failure."""
        if self.state not in (RephraseState.REJECTED, RephraseState.FAILED):
            raise RephraseStateError(f"Cannot retry from {self.state.value}.")
        return await self.request()

    async def accept(self, replacement: str | None = None) -> RephraseRecord | None:
        """Apply the rewrite result to the document, storage and message list."""
        op = self._pending
        if op is None or self.state is not RephraseState.AWAITING_RESULT:
            raise RephraseStateError(f"Cannot accept from {self.state.value}.")
        new_text = replacement if replacement is not None else op.result
        if not new_text:
            raise RephraseStateError("No rewrite result to accept.")
        if not self.gate.try_acquire():
            self.notifier.warning("Another rephrase is still being applied.")
            return None
        try:
            return await self._apply(op, new_text)
        finally:
            self.gate.release()

    async def _apply(self, op: PendingRephrase, new_text: str) -> RephraseRecord | None:
        self._move(RephraseState.REPLACING)
        replaced_text = self.document.slice(op.span)
        self.document.replace_span(op.span, new_text)

        self._move(RephraseState.PERSISTING)
        try:
            content = await self.storage.get_message_content(op.target_message_id)
            plan = self._locate(op.original_text, content, new_text)
            if not await self.storage.update_message_content(
                op.target_message_id, plan.new_content
            ):
                raise StorageError("Storage did not accept the updated content.")
        except Exception as exc:  # noqa: BLE001 - converted to a notification.
            LOGGER.error(
                "rephrase.persist.failed",
                extra={
                    "event": "rephrase.persist.failed",
                    "operation_id": op.operation_id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            # op.span must address the original text again for a retry.
            self.document.replace_span(
                replace(op.span, end=op.span.start + len(new_text)), replaced_text
            )
            self._move(RephraseState.FAILED)
            self.notifier.error(f"Could not save the rephrased text: {exc}")
            return None

        LOGGER.info(
            "rephrase.persisted",
            extra={
                "event": "rephrase.persisted",
                "operation_id": op.operation_id,
                "strategy": plan.strategy,
            },
        )
        if plan.needs_review and self.review_partial_matches:
            self.notifier.warning(
                "The selection was only matched approximately. Please review the message."
            )

        self._move(RephraseState.VERIFYING)
        verified = await self._verify(op.target_message_id, plan.new_content, op.operation_id)

        self._move(RephraseState.DONE)
        self._patch_message(op.target_message_id, plan.new_content)
        record = RephraseRecord(
            message_id=op.target_message_id,
            original_text=op.original_text,
            replacement=new_text,
            strategy=plan.strategy,
            needs_review=plan.needs_review,
            verified=verified,
            operation_id=op.operation_id,
        )
        self.records.append(record)
        self._pending = None
        return record

    async def _verify(self, message_id: str, expected: str, operation_id: str) -> bool:
        if not self.verify_persistence:
            return False
        try:
            persisted = await self.storage.get_message_content(message_id)
        except Exception as exc:  # noqa: BLE001 - the write already succeeded.
            persisted = None
            LOGGER.warning(
                "rephrase.verify.read_failed",
                extra={
                    "event": "rephrase.verify.read_failed",
                    "operation_id": operation_id,
                    "error": str(exc),
                },
            )
        if persisted == expected:
            return True
        LOGGER.warning(
            "rephrase.verify.mismatch",
            extra={
                "event": "rephrase.verify.mismatch",
                "operation_id": operation_id,
                "message_id": message_id,
                "expected_chars": len(expected),
                "persisted_chars": len(persisted) if persisted is not None else None,
            },
        )
        self.notifier.warning("The saved message differs from the rephrased text.")
        return False

    def _patch_message(self, message_id: str, content: str) -> None:
        self.transport.set_messages(
            lambda prev: patch_message(
                prev, message_id, lambda message: with_content(message, content)
            )
        )

    async def revert(self, record: RephraseRecord) -> bool:
        """Put the original text back in place of a completed rephrase."""
        if not self.gate.try_acquire():
            self.notifier.warning("Another rephrase is still being applied.")
            return False
        try:
            content = await self.storage.get_message_content(record.message_id)
            reverted = self._reverted_content(record, content)
            if reverted is None:
                self.notifier.warning("The rephrased text could not be found anymore.")
                return False
            if not await self.storage.update_message_content(record.message_id, reverted):
                raise StorageError("Storage did not accept the reverted content.")
            await self._verify(record.message_id, reverted, record.operation_id)
        except Exception as exc:  # noqa: BLE001 - converted to a notification.
            LOGGER.error(
                "rephrase.revert.failed",
                extra={
                    "event": "rephrase.revert.failed",
                    "operation_id": record.operation_id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            self.notifier.error(f"Could not revert the rephrased text: {exc}")
            return False
        finally:
            self.gate.release()

        self._patch_message(record.message_id, reverted)
        if record in self.records:
            self.records.remove(record)
        LOGGER.info(
            "rephrase.reverted",
            extra={"event": "rephrase.reverted", "operation_id": record.operation_id},
        )
        return True

    def _reverted_content(self, record: RephraseRecord, content: str) -> str | None:
        if record.strategy == "append":
            markers = [
                marker
                for marker in find_rephrase_markers(content, self.marker_label)
                if marker.text == record.replacement
            ]
            if not markers:
                return None
            marker = markers[-1]
            return content[: marker.start].rstrip("\n") + content[marker.end :]
        if record.strategy == "partial":
            # Only the first replacement word was substituted.
            words = record.replacement.split()
            original_words = [
                word
                for word in record.original_text.split()
                if len(word) > self.anchor_word_length
            ]
            if not words or not original_words or words[0] not in content:
                return None
            return content.replace(words[0], original_words[0], 1)
        plan = self._locate(record.replacement, content, record.original_text)
        return plan.new_content if plan.located else None

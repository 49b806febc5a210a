"""Reasoning stream reconciliation.

Reasoning events (start / delta / end) and the transport's message list move
on independent timelines: the first delta routinely arrives before the
transport has appended the assistant message that should receive it. The
reducer below resolves each event against a fresh snapshot of the list and
either patches the target message, binds a newly visible assistant message,
or parks the text in a :class:`ReasoningBuffer` until one appears.

Every patch is a full-state write of the accumulated text, so re-applying a
patch never duplicates content.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
import logging
from typing import TYPE_CHECKING, Union

from .messages import (
    Message,
    find_index,
    latest_message,
    patch_message,
    with_final_reasoning,
    with_reasoning_part,
)

if TYPE_CHECKING:
    from .interfaces import (
        MessagesUpdater,
        ReasoningEventSource,
        TransportHook,
        TransportStatus,
        Unsubscribe,
    )

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReasoningStart:
    """A new reasoning stream begins."""


@dataclass(frozen=True)
class ReasoningDelta:
    """A chunk of reasoning text.

    ``sequence`` is the chunk's position in its stream. A delta whose sequence
    is not newer than the last one applied is a replay and is ignored.
    """

    text: str
    sequence: int | None = None


@dataclass(frozen=True)
class ReasoningEnd:
    """The stream finished; ``total_text`` is authoritative when non-empty."""

    duration: float
    total_text: str = ""


ReasoningEvent = Union[ReasoningStart, ReasoningDelta, ReasoningEnd]


@dataclass(frozen=True)
class ReasoningBuffer:
    """Reasoning text waiting for an assistant message to appear.

    ``duration`` is set once the stream has ended.
    """

    text: str = ""
    pending: bool = False
    duration: float | None = None

    def clear(self) -> ReasoningBuffer:
        return EMPTY_BUFFER


EMPTY_BUFFER = ReasoningBuffer()


@dataclass(frozen=True)
class ReasoningPatch:
    """Full-state write of reasoning text onto one message."""

    message_id: str
    text: str
    duration: float | None = None
    final: bool = False

    def apply(self, message: Message) -> Message:
        if self.final:
            return with_final_reasoning(message, self.text, self.duration or 0.0)
        return with_reasoning_part(message, self.text, self.duration)


@dataclass(frozen=True)
class ReconcilerState:
    accumulated: str = ""
    target_message_id: str | None = None
    buffer: ReasoningBuffer = field(default_factory=ReasoningBuffer)
    last_sequence: int | None = None


@dataclass(frozen=True)
class ReconcileStep:
    state: ReconcilerState
    patch: ReasoningPatch | None = None


def _resolve(
    state: ReconcilerState,
    messages: Sequence[Message],
    duration: float | None,
    final: bool,
) -> ReconcileStep:
    if not state.accumulated:
        return ReconcileStep(state)

    target = state.target_message_id
    if target is not None and find_index(messages, target) >= 0:
        return ReconcileStep(
            state, ReasoningPatch(target, state.accumulated, duration, final)
        )

    latest = latest_message(messages)
    if latest is not None and latest.role == "assistant":
        bound = replace(state, target_message_id=latest.id, buffer=state.buffer.clear())
        return ReconcileStep(
            bound, ReasoningPatch(latest.id, state.accumulated, duration, final)
        )

    buffered = replace(
        state,
        target_message_id=None,
        buffer=ReasoningBuffer(text=state.accumulated, pending=True, duration=duration),
    )
    return ReconcileStep(buffered)


def reduce(
    state: ReconcilerState, event: ReasoningEvent, messages: Sequence[Message]
) -> ReconcileStep:
    """Return the next state and the patch (if any) for one reasoning event."""
    if isinstance(event, ReasoningStart):
        # A buffer still pending from the previous stream is discarded here.
        return ReconcileStep(ReconcilerState())

    if isinstance(event, ReasoningDelta):
        if (
            event.sequence is not None
            and state.last_sequence is not None
            and event.sequence <= state.last_sequence
        ):
            return ReconcileStep(state)
        advanced = replace(
            state,
            accumulated=state.accumulated + event.text,
            last_sequence=(
                event.sequence if event.sequence is not None else state.last_sequence
            ),
        )
        return _resolve(advanced, messages, None, final=False)

    if isinstance(event, ReasoningEnd):
        finished = replace(state, accumulated=event.total_text or state.accumulated)
        return _resolve(finished, messages, event.duration, final=True)

    raise TypeError(f"Unsupported reasoning event {event!r}")


def flush_pending(
    state: ReconcilerState, messages: Sequence[Message]
) -> ReconcileStep:
    """Move a pending buffer onto the newest message once it is an assistant."""
    buffer = state.buffer
    if not buffer.pending:
        return ReconcileStep(state)
    latest = latest_message(messages)
    if latest is None or latest.role != "assistant":
        return ReconcileStep(state)
    patch = ReasoningPatch(
        latest.id,
        buffer.text,
        buffer.duration,
        final=buffer.duration is not None,
    )
    return ReconcileStep(
        replace(state, target_message_id=latest.id, buffer=buffer.clear()), patch
    )


class ReasoningReconciler:
    """Wire the reducer to an event source and the transport's message list.

    ``snapshot`` must return the *current* list on every call; the reconciler
    never keeps a copy of the list between events.
    """

    def __init__(
        self,
        snapshot: Callable[[], list[Message]],
        set_messages: Callable[[MessagesUpdater], None],
    ) -> None:
        self._snapshot = snapshot
        self._set_messages = set_messages
        self._state = ReconcilerState()
        self._subscriptions: list[Unsubscribe] = []

    @classmethod
    def for_transport(cls, transport: TransportHook) -> ReasoningReconciler:
        """Build a reconciler that also watches ``transport`` for new messages."""
        reconciler = cls(lambda: transport.messages, transport.set_messages)
        reconciler._subscriptions.append(
            transport.subscribe(reconciler.on_messages_changed)
        )
        return reconciler

    @property
    def state(self) -> ReconcilerState:
        return self._state

    @property
    def buffer(self) -> ReasoningBuffer:
        return self._state.buffer

    @property
    def target_message_id(self) -> str | None:
        return self._state.target_message_id

    def attach(self, source: ReasoningEventSource) -> None:
        """Start observing ``source``."""
        self._subscriptions.append(source.subscribe(self.handle))

    def close(self) -> None:
        """Stop observing every source and the transport."""
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()

    def on_reasoning_start(self) -> None:
        self.handle(ReasoningStart())

    def on_reasoning_delta(self, text: str, sequence: int | None = None) -> None:
        self.handle(ReasoningDelta(text, sequence))

    def on_reasoning_end(self, duration: float, total_text: str = "") -> None:
        self.handle(ReasoningEnd(duration, total_text))

    def handle(self, event: ReasoningEvent) -> None:
        """Reconcile one event. Never raises."""
        try:
            previous = self._state
            step = reduce(previous, event, self._snapshot())
            self._log_step(event, previous, step)
            self._commit(step)
        except Exception as exc:  # noqa: BLE001 - reconciliation is best-effort.
            LOGGER.error(
                "reasoning.reconcile.failed",
                extra={
                    "event": "reasoning.reconcile.failed",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )

    def on_messages_changed(
        self, messages: list[Message], status: TransportStatus | None = None
    ) -> None:
        """Watcher: flush a pending buffer once an assistant message shows up."""
        try:
            step = flush_pending(self._state, self._snapshot())
            if step.patch is not None:
                LOGGER.info(
                    "reasoning.flushed",
                    extra={
                        "event": "reasoning.flushed",
                        "message_id": step.patch.message_id,
                        "chars": len(step.patch.text),
                    },
                )
            self._commit(step)
        except Exception as exc:  # noqa: BLE001 - reconciliation is best-effort.
            LOGGER.error(
                "reasoning.flush.failed",
                extra={
                    "event": "reasoning.flush.failed",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )

    def _commit(self, step: ReconcileStep) -> None:
        # State first: applying the patch re-enters on_messages_changed.
        self._state = step.state
        patch = step.patch
        if patch is not None:
            self._set_messages(
                lambda prev: patch_message(prev, patch.message_id, patch.apply)
            )

    @staticmethod
    def _log_step(
        event: ReasoningEvent, previous: ReconcilerState, step: ReconcileStep
    ) -> None:
        if isinstance(event, ReasoningStart) and previous.buffer.pending:
            LOGGER.info(
                "reasoning.buffer.discarded",
                extra={
                    "event": "reasoning.buffer.discarded",
                    "chars": len(previous.buffer.text),
                },
            )
        elif isinstance(event, ReasoningDelta) and step.state is previous:
            LOGGER.debug(
                "reasoning.delta.replayed",
                extra={"event": "reasoning.delta.replayed", "sequence": event.sequence},
            )
        elif step.patch is None and step.state.buffer.pending:
            LOGGER.debug(
                "reasoning.buffered",
                extra={
                    "event": "reasoning.buffered",
                    "chars": len(step.state.buffer.text),
                },
            )
        elif (
            step.patch is not None
            and previous.target_message_id != step.state.target_message_id
        ):
            LOGGER.info(
                "reasoning.attached",
                extra={
                    "event": "reasoning.attached",
                    "message_id": step.patch.message_id,
                },
            )

"""Reasoning event sources.

Two wire shapes are supported:

* the ``r:{json}`` line protocol interleaved with ordinary stream lines
  (``reasoning-start``, ``reasoning-delta`` with ``content``, and
  ``reasoning-end`` with ``duration`` / ``totalReasoning``);
* Ollama chat chunks, where reasoning arrives as ``message.thinking`` before
  the first ``message.content`` token.

Both push typed events from :mod:`chat_reconciler.reasoning` to subscribers.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Callable
import json
import logging
import time
from typing import Any

from .reasoning import ReasoningDelta, ReasoningEnd, ReasoningEvent, ReasoningStart

LOGGER = logging.getLogger(__name__)

REASONING_LINE_PREFIX = "r:"


class _EventSource:
    def __init__(self) -> None:
        self._listeners: list[Callable[[ReasoningEvent], None]] = []
        self._sequence = 0

    def subscribe(self, listener: Callable[[ReasoningEvent], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _dispatch(self, event: ReasoningEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # noqa: BLE001 - one listener must not starve others.
                LOGGER.error(
                    "reasoning.listener.failed",
                    extra={
                        "event": "reasoning.listener.failed",
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )

    def _start(self) -> None:
        self._sequence = 0
        self._dispatch(ReasoningStart())

    def _delta(self, text: str) -> None:
        self._sequence += 1
        self._dispatch(ReasoningDelta(text, self._sequence))


class ReasoningLineParser(_EventSource):
    """Split a text stream into reasoning events and pass-through lines.

    ``feed`` accepts arbitrary chunks; a line split across chunks is held
    until its newline arrives.
    """

    def __init__(self) -> None:
        super().__init__()
        self._partial = ""
        self._accumulated = ""

    def feed(self, chunk: str) -> list[str]:
        """Consume ``chunk`` and return the complete non-reasoning lines in it."""
        lines = (self._partial + chunk).split("\n")
        self._partial = lines.pop()
        return [out for out in map(self.feed_line, lines) if out is not None]

    def close(self) -> list[str]:
        """Flush a trailing line that never received its newline."""
        tail, self._partial = self._partial, ""
        if not tail:
            return []
        out = self.feed_line(tail)
        return [out] if out is not None else []

    def feed_line(self, line: str) -> str | None:
        """Handle one line; return it unless it was a reasoning event or blank."""
        if not line.startswith(REASONING_LINE_PREFIX):
            return line if line.strip() else None
        try:
            payload = json.loads(line[len(REASONING_LINE_PREFIX) :])
        except ValueError as exc:
            LOGGER.warning(
                "reasoning.line.invalid",
                extra={"event": "reasoning.line.invalid", "error": str(exc)},
            )
            return None
        if not isinstance(payload, dict):
            return None
        self._handle_payload(payload)
        return None

    def _handle_payload(self, payload: dict[str, Any]) -> None:
        kind = payload.get("type")
        if kind == "reasoning-start":
            self._accumulated = ""
            self._start()
        elif kind == "reasoning-delta":
            content = payload.get("content")
            if isinstance(content, str) and content:
                self._accumulated += content
                self._delta(content)
        elif kind == "reasoning-end":
            total = payload.get("totalReasoning")
            duration = payload.get("duration")
            self._dispatch(
                ReasoningEnd(
                    duration=float(duration) if isinstance(duration, (int, float)) else 0.0,
                    total_text=total if isinstance(total, str) and total else self._accumulated,
                )
            )
        else:
            LOGGER.debug(
                "reasoning.line.ignored",
                extra={"event": "reasoning.line.ignored", "type": kind},
            )


def extract_chunk_field(chunk: Any, field: str) -> Any:
    """Read ``message.<field>`` from an Ollama chunk (SDK object or dict)."""
    message_obj = getattr(chunk, "message", None)
    if message_obj is not None:
        value = getattr(message_obj, field, None)
        if value is not None:
            return value

    if hasattr(chunk, "model_dump"):
        chunk = chunk.model_dump()

    if isinstance(chunk, dict):
        message = chunk.get("message")
        if isinstance(message, dict):
            value = message.get(field)
            if value is not None:
                return value
        return chunk.get(field)
    return None


class OllamaReasoningSource(_EventSource):
    """Turn Ollama ``think=True`` chat chunks into reasoning events.

    Reasoning ends on the first content token, on ``done``, or on
    :meth:`finish`; its duration is measured with a monotonic clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__()
        self._clock = clock
        self._started_at: float | None = None
        self._accumulated = ""

    @property
    def in_reasoning(self) -> bool:
        return self._started_at is not None

    def observe(self, chunk: Any) -> str:
        """Process one chunk and return its content text (may be empty)."""
        thinking = extract_chunk_field(chunk, "thinking")
        if isinstance(thinking, str) and thinking:
            if self._started_at is None:
                self._started_at = self._clock()
                self._accumulated = ""
                self._start()
            self._accumulated += thinking
            self._delta(thinking)

        content = extract_chunk_field(chunk, "content")
        text = content if isinstance(content, str) else ""
        if text or extract_chunk_field(chunk, "done") is True:
            self.finish()
        return text

    def finish(self) -> None:
        """Emit the end event if a reasoning block is still open."""
        if self._started_at is None:
            return
        duration = max(0.0, self._clock() - self._started_at)
        self._started_at = None
        self._dispatch(ReasoningEnd(duration=duration, total_text=self._accumulated))

    async def relay(self, chunks: AsyncIterable[Any]) -> AsyncIterator[str]:
        """Yield content tokens from ``chunks`` while emitting reasoning events."""
        try:
            async for chunk in chunks:
                text = self.observe(chunk)
                if text:
                    yield text
        finally:
            self.finish()

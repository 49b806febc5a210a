"""Abstract document model standing in for the rendered message DOM."""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class SpanRange:
    """A character range inside the rendered document.

    ``detached`` spans are snapshots: later edits to the document do not move
    them, which is what an operation spanning an ``await`` wants.
    """

    start: int = 0
    end: int = 0
    detached: bool = False

    def as_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)

    @property
    def length(self) -> int:
        return self.end - self.start


def _clamp_range(start: int, end: int, length: int) -> tuple[int, int]:
    start = max(0, min(int(start), length))
    end = max(0, min(int(end), length))
    if end < start:
        start, end = end, start
    return start, end


class InMemoryDocument:
    """Plain-string document used in tests and headless runs."""

    def __init__(self, text: str = "") -> None:
        self._text = text
        self.version = 0

    @property
    def text(self) -> str:
        return self._text

    def select(self, needle: str) -> SpanRange:
        """Return a live span over the first occurrence of ``needle``."""
        start = self._text.find(needle)
        if start < 0:
            return SpanRange(0, 0)
        return SpanRange(start, start + len(needle))

    def slice(self, span: SpanRange) -> str:
        start, end = _clamp_range(span.start, span.end, len(self._text))
        return self._text[start:end]

    def clone_range(self, span: SpanRange) -> SpanRange:
        start, end = _clamp_range(span.start, span.end, len(self._text))
        return replace(span, start=start, end=end, detached=True)

    def replace_span(self, span: SpanRange, text: str) -> None:
        start, end = _clamp_range(span.start, span.end, len(self._text))
        self._text = self._text[:start] + text + self._text[end:]
        self.version += 1

"""Best-effort location of a selected string inside persisted message content.

The selection was captured before an asynchronous rewrite round trip, so the
content may no longer contain it verbatim. Strategies are tried in order and
the last one (appending a marker line) always succeeds.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Literal

LOGGER = logging.getLogger(__name__)

Strategy = Literal["exact", "normalized", "partial", "append"]

DEFAULT_MARKER_LABEL = "Rephrased"
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class LocatorPlan:
    """Result of :func:`locate`: the strategy that matched and the new content."""

    strategy: Strategy
    new_content: str
    needs_review: bool = False

    @property
    def located(self) -> bool:
        return self.strategy != "append"


@dataclass(frozen=True)
class RephraseMarker:
    start: int
    end: int
    text: str
    label: str


def normalize_whitespace(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def marker_line(replacement: str, label: str = DEFAULT_MARKER_LABEL) -> str:
    return f"*[{label}]: {replacement}*"


def _marker_pattern(label: str | None) -> re.Pattern[str]:
    label_pattern = re.escape(label) if label else r"[^\]\n]+"
    return re.compile(rf"^\*\[(?P<label>{label_pattern})\]: (?P<text>.*)\*[ \t]*$", re.MULTILINE)


def _exact(original: str, content: str, replacement: str) -> str | None:
    if original not in content:
        return None
    return content.replace(original, replacement, 1)


def _normalized(original: str, content: str, replacement: str) -> str | None:
    if normalize_whitespace(original) not in normalize_whitespace(content):
        return None
    pattern = re.escape(original)
    if re.search(pattern, content) is None:
        # The selection collapsed whitespace that the content still carries.
        pattern = r"\s+".join(re.escape(token) for token in original.split())
    updated, count = re.subn(pattern, lambda _match: replacement, content)
    return updated if count else None


def _partial(
    original: str,
    content: str,
    replacement: str,
    threshold: float,
    min_word_length: int,
    anchor_word_length: int,
) -> str | None:
    words = [word for word in original.split() if len(word) > min_word_length]
    if not words:
        return None
    present = [word for word in words if word in content]
    if len(present) / len(words) <= threshold:
        return None
    anchor = next(
        (word for word in words if len(word) > anchor_word_length and word in content),
        None,
    )
    replacement_words = replacement.split()
    if anchor is None or not replacement_words:
        return None
    return content.replace(anchor, replacement_words[0], 1)


def append_marker(content: str, replacement: str, label: str = DEFAULT_MARKER_LABEL) -> str:
    return f"{content}\n\n{marker_line(replacement, label)}"


def locate(
    original_text: str,
    content: str,
    replacement: str,
    *,
    threshold: float = 0.7,
    min_word_length: int = 2,
    anchor_word_length: int = 4,
    marker_label: str = DEFAULT_MARKER_LABEL,
) -> LocatorPlan:
    """Return a replacement plan for ``original_text`` inside ``content``.

    Never raises; when nothing matches the replacement is appended as a
    ``*[<label>]: <replacement>*`` line.
    """
    if original_text.strip():
        try:
            updated = _exact(original_text, content, replacement)
            if updated is not None:
                return LocatorPlan("exact", updated)
            updated = _normalized(original_text, content, replacement)
            if updated is not None:
                return LocatorPlan("normalized", updated)
            updated = _partial(
                original_text,
                content,
                replacement,
                threshold,
                min_word_length,
                anchor_word_length,
            )
            if updated is not None:
                return LocatorPlan("partial", updated, needs_review=True)
        except re.error as exc:
            LOGGER.warning(
                "locator.pattern.failed",
                extra={"event": "locator.pattern.failed", "error": str(exc)},
            )
    return LocatorPlan("append", append_marker(content, replacement, marker_label))


def find_rephrase_markers(content: str, label: str | None = None) -> list[RephraseMarker]:
    """Return every marker line in ``content``; ``label=None`` matches any label."""
    return [
        RephraseMarker(
            start=match.start(),
            end=match.end(),
            text=match.group("text"),
            label=match.group("label"),
        )
        for match in _marker_pattern(label).finditer(content)
    ]


def strip_rephrase_markers(content: str, label: str | None = None) -> str:
    """Remove marker lines together with the blank line that introduced them."""
    stripped = content
    for marker in reversed(find_rephrase_markers(content, label)):
        stripped = stripped[: marker.start].rstrip("\n") + stripped[marker.end :]
    return stripped

"""Transient "thinking" placeholder for reasoning-capable models."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace
import logging
from typing import TYPE_CHECKING, Any

from .interfaces import ACTIVE_STATUSES
from .messages import (
    Message,
    MessagePart,
    latest_message,
    without_reasoning_part,
)

if TYPE_CHECKING:
    from .interfaces import CapabilityLookup, TransportHook, TransportStatus, Unsubscribe

LOGGER = logging.getLogger(__name__)

THINKING_PLACEHOLDER = "__thinking__"


def is_placeholder(message: Message, placeholder_text: str = THINKING_PLACEHOLDER) -> bool:
    """True when the only reasoning the message carries is the sentinel."""
    part = message.reasoning_part()
    return (
        part is not None
        and part.text == placeholder_text
        and message.reasoning is None
    )


def insert_placeholder(
    messages: Sequence[Message], placeholder_text: str = THINKING_PLACEHOLDER
) -> list[Message]:
    """Prepend a sentinel reasoning part to the newest assistant message."""
    updated = list(messages)
    latest = latest_message(updated)
    if latest is None or latest.role != "assistant" or latest.reasoning_part() is not None:
        return updated
    updated[-1] = replace(
        latest,
        parts=[MessagePart(type="reasoning", text=placeholder_text), *latest.parts],
    )
    return updated


def remove_stale_placeholder(
    messages: Sequence[Message], placeholder_text: str = THINKING_PLACEHOLDER
) -> list[Message]:
    """Drop the sentinel from the newest assistant message if nothing replaced it."""
    updated = list(messages)
    latest = latest_message(updated)
    if latest is None or latest.role != "assistant":
        return updated
    if is_placeholder(latest, placeholder_text):
        updated[-1] = without_reasoning_part(latest)
    return updated


class PlaceholderLifecycle:
    """Insert the placeholder while a request is active and clean it up afterwards."""

    def __init__(
        self,
        transport: TransportHook,
        capabilities: CapabilityLookup,
        model_id: str,
        placeholder_text: str = THINKING_PLACEHOLDER,
        enabled: bool = True,
    ) -> None:
        self.transport = transport
        self.capabilities = capabilities
        self.model_id = model_id
        self.placeholder_text = placeholder_text
        self.enabled = enabled
        self._last_status: TransportStatus = transport.status
        self._unsubscribe: Unsubscribe | None = None

    @classmethod
    def from_config(
        cls,
        transport: TransportHook,
        capabilities: CapabilityLookup,
        model_id: str,
        config: dict[str, Any],
    ) -> PlaceholderLifecycle:
        section = config.get("reasoning", {})
        return cls(
            transport,
            capabilities,
            model_id,
            placeholder_text=section.get("placeholder_text", THINKING_PLACEHOLDER),
            enabled=bool(section.get("show_placeholder", True)),
        )

    def attach(self) -> PlaceholderLifecycle:
        """Start watching the transport."""
        if self._unsubscribe is None:
            self._unsubscribe = self.transport.subscribe(self.on_transport_change)
        return self

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def set_model(self, model_id: str) -> None:
        """Update the active model used for the capability check."""
        normalized = model_id.strip()
        if normalized:
            self.model_id = normalized

    def on_transport_change(
        self, messages: list[Message], status: TransportStatus
    ) -> None:
        previous = self._last_status
        self._last_status = status
        if status in ACTIVE_STATUSES:
            if self.enabled and self.capabilities.supports_thinking(self.model_id):
                self._apply_if_changed(insert_placeholder, "placeholder.inserted")
        elif previous in ACTIVE_STATUSES:
            self._apply_if_changed(remove_stale_placeholder, "placeholder.removed")

    def _apply_if_changed(
        self,
        transform: Callable[[Sequence[Message], str], list[Message]],
        event_name: str,
    ) -> None:
        current = self.transport.messages
        if transform(current, self.placeholder_text) == current:
            return
        latest = latest_message(current)
        LOGGER.debug(
            event_name,
            extra={
                "event": event_name,
                "message_id": latest.id if latest is not None else None,
                "model": self.model_id,
            },
        )
        self.transport.set_messages(
            lambda prev: transform(prev, self.placeholder_text)
        )

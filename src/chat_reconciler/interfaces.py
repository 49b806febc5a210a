"""Collaborator contracts consumed by the reconciliation engines.

Everything here is implemented elsewhere (a browser transport, a database,
a model provider). The package ships one concrete implementation of each so
the engines can run end to end, but the engines only depend on these
protocols.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Literal, Protocol

if TYPE_CHECKING:
    from .document import SpanRange
    from .messages import Attachment, Message
    from .reasoning import ReasoningEvent

TransportStatus = Literal["idle", "submitted", "streaming", "ready", "error"]
MessagesUpdater = Callable[[list["Message"]], list["Message"]]
MessagesListener = Callable[[list["Message"], TransportStatus], None]
ReasoningListener = Callable[["ReasoningEvent"], None]
Unsubscribe = Callable[[], None]

ACTIVE_STATUSES: frozenset[str] = frozenset({"submitted", "streaming"})


class TransportHook(Protocol):
    """Owner of the canonical message list and request status."""

    @property
    def messages(self) -> list[Message]: ...

    @property
    def status(self) -> TransportStatus: ...

    def set_messages(self, updater: MessagesUpdater | list[Message]) -> None: ...

    async def append(
        self, message: Message, options: dict[str, Any] | None = None
    ) -> None: ...

    async def reload(self, options: dict[str, Any] | None = None) -> None: ...

    def stop(self) -> None: ...

    def subscribe(self, listener: MessagesListener) -> Unsubscribe: ...


class ReasoningEventSource(Protocol):
    """Pure push source of reasoning events; no acknowledgement channel."""

    def subscribe(self, listener: ReasoningListener) -> Unsubscribe: ...


class RewriteAction(Protocol):
    """Out-of-band AI rewrite. ``None`` means no actionable result."""

    def __call__(
        self, action: str, text: str, target_language: str | None = None
    ) -> Awaitable[str | None]: ...


class MessageStorage(Protocol):
    """Persistence collaborator for message content and attachments."""

    async def update_message_content(self, message_id: str, content: str) -> bool: ...

    async def get_message_content(self, message_id: str) -> str: ...

    async def get_file_attachments_by_message_id(
        self, message_id: str
    ) -> list[Attachment]: ...

    async def delete_trailing_messages(self, message_id: str) -> int: ...


class CapabilityLookup(Protocol):
    """Model capability oracle used to gate the thinking placeholder."""

    def supports_thinking(self, model_id: str) -> bool: ...


class DocumentModel(Protocol):
    """Live rendered document holding the user's selection."""

    @property
    def text(self) -> str: ...

    def slice(self, span: SpanRange) -> str: ...

    def clone_range(self, span: SpanRange) -> SpanRange: ...

    def replace_span(self, span: SpanRange, text: str) -> None: ...


class Notifier(Protocol):
    """User-visible notifications (toasts)."""

    def info(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

"""In-memory transport hook: canonical message list, request status and watchers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import json
import logging
from typing import Any

from .interfaces import (
    MessagesListener,
    MessagesUpdater,
    TransportStatus,
    Unsubscribe,
)
from .messages import Message
from .task_manager import TaskManager

LOGGER = logging.getLogger(__name__)

VALID_STATUSES: frozenset[str] = frozenset(
    {"idle", "submitted", "streaming", "ready", "error"}
)

# Performs the actual network request for append/reload.
Requester = Callable[["MessageStore", dict[str, Any]], Awaitable[None]]

_MAX_NOTIFY_ROUNDS = 16


class MessageStore:
    """Own the message array and expose it through a read-modify-write setter.

    Watchers registered with :meth:`subscribe` run after every change of the
    list or the status. Writes issued from inside a watcher are coalesced:
    watchers are re-run once more with the fresh state instead of recursing.
    """

    def __init__(
        self,
        messages: list[Message] | None = None,
        requester: Requester | None = None,
        max_history_messages: int = 500,
    ) -> None:
        self.max_history_messages = max(1, max_history_messages)
        self._messages: list[Message] = list(messages or [])
        self._status: TransportStatus = "idle"
        self._requester = requester
        self._listeners: list[MessagesListener] = []
        self._tasks = TaskManager()
        self._notifying = False
        self._dirty = False
        self._stop_requested = False
        self.last_request_options: dict[str, Any] | None = None
        self.stop_calls = 0

    @property
    def messages(self) -> list[Message]:
        """Return a shallow copy of the current list."""
        return list(self._messages)

    @property
    def status(self) -> TransportStatus:
        return self._status

    def subscribe(self, listener: MessagesListener) -> Unsubscribe:
        """Register a watcher; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def set_messages(self, updater: MessagesUpdater | list[Message]) -> None:
        """Replace the list, or apply ``updater`` to the latest list."""
        if callable(updater):
            next_messages = updater(list(self._messages))
        else:
            next_messages = list(updater)
        self._messages = list(next_messages)
        self._trim_by_history_limit()
        self._notify()

    def set_status(self, status: TransportStatus) -> None:
        """Transition the request status and notify watchers on change."""
        if status not in VALID_STATUSES:
            raise ValueError(f"Unsupported transport status {status!r}.")
        if status == self._status:
            return
        LOGGER.debug(
            "transport.status",
            extra={
                "event": "transport.status",
                "from_status": self._status,
                "to_status": status,
            },
        )
        self._status = status
        self._notify()

    async def append(
        self, message: Message, options: dict[str, Any] | None = None
    ) -> None:
        """Append a message and issue a request for the assistant reply."""
        self.set_messages(lambda prev: [*prev, message])
        await self._request(options or {})

    async def reload(self, options: dict[str, Any] | None = None) -> None:
        """Re-issue the request for the current list (regeneration)."""
        await self._request(options or {})

    def stop(self) -> None:
        """Stop the current request, if any."""
        self.stop_calls += 1
        self._stop_requested = True
        self._tasks.cancel_nowait("active_request")
        if self._status in ("submitted", "streaming"):
            self.set_status("ready")

    def export_json(self) -> str:
        """Export the list using stable field ordering."""
        return json.dumps(
            [message.to_dict() for message in self._messages],
            ensure_ascii=False,
            separators=(",", ":"),
        )

    async def _request(self, options: dict[str, Any]) -> None:
        self.last_request_options = options
        self.set_status("submitted")
        if self._requester is None:
            return
        self._stop_requested = False
        task = asyncio.create_task(self._requester(self, options))
        self._tasks.add(task, name="active_request")
        try:
            await task
        except asyncio.CancelledError:
            LOGGER.info(
                "transport.request.cancelled",
                extra={"event": "transport.request.cancelled"},
            )
            if self._status in ("submitted", "streaming"):
                self.set_status("ready")
            current = asyncio.current_task()
            if not self._stop_requested or (
                current is not None and current.cancelling()
            ):
                raise
        except Exception:
            self.set_status("error")
            raise
        else:
            if self._status in ("submitted", "streaming"):
                self.set_status("ready")
        finally:
            self._tasks.discard("active_request", task)

    def _trim_by_history_limit(self) -> None:
        """Enforce max_history_messages while keeping system messages."""
        if len(self._messages) <= self.max_history_messages:
            return
        system_msgs = [m for m in self._messages if m.role == "system"]
        non_system = [m for m in self._messages if m.role != "system"]
        max_non_system = max(0, self.max_history_messages - len(system_msgs))
        trimmed = non_system[-max_non_system:] if max_non_system > 0 else []
        self._messages = system_msgs + trimmed

    def _notify(self) -> None:
        if self._notifying:
            self._dirty = True
            return
        self._notifying = True
        try:
            for _ in range(_MAX_NOTIFY_ROUNDS):
                self._dirty = False
                for listener in list(self._listeners):
                    try:
                        listener(list(self._messages), self._status)
                    except Exception as exc:  # noqa: BLE001 - a watcher must not break the transport.
                        LOGGER.error(
                            "transport.listener.failed",
                            extra={
                                "event": "transport.listener.failed",
                                "error_type": type(exc).__name__,
                                "error": str(exc),
                            },
                        )
                if not self._dirty:
                    break
            else:
                LOGGER.warning(
                    "transport.listener.unsettled",
                    extra={"event": "transport.listener.unsettled"},
                )
        finally:
            self._notifying = False

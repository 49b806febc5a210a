"""Event bus and the notifier that publishes user-facing toasts on it.

Usage:
    bus = EventBus()
    bus.subscribe("notify.warning", lambda event: show_toast(event.data["message"]))

    notifier = EventNotifier(bus)
    notifier.warning("Saved content differs from the expected result.")
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import inspect
import logging
from typing import Any, Literal

LOGGER = logging.getLogger(__name__)

NotificationLevel = Literal["info", "warning", "error"]

_LOG_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class Event:
    """Event data container."""

    name: str
    data: dict[str, Any]
    source: str | None = None


class EventBus:
    """Per-instance publish/subscribe hub.

    Handlers may be plain callables or coroutine functions. ``publish`` awaits
    coroutine handlers; ``emit`` is for synchronous callers and schedules them
    on the running loop.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[[Event], Any]]] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, event_name: str, handler: Callable[[Event], Any]) -> None:
        """Subscribe ``handler`` to ``event_name`` (e.g. ``"notify.error"``)."""
        self._subscribers.setdefault(event_name, []).append(handler)
        LOGGER.debug("Subscribed to event: %s", event_name)

    def unsubscribe(self, event_name: str, handler: Callable[[Event], Any]) -> None:
        handlers = self._subscribers.get(event_name)
        if handlers and handler in handlers:
            handlers.remove(handler)
            LOGGER.debug("Unsubscribed from event: %s", event_name)

    async def publish(
        self, event_name: str, data: dict[str, Any], source: str | None = None
    ) -> None:
        """Publish an event and await every coroutine handler."""
        event = Event(name=event_name, data=data, source=source)
        for handler in list(self._subscribers.get(event_name, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001 - one handler must not break others.
                LOGGER.error("Event handler failed for %s: %s", event_name, exc)

    def emit(
        self, event_name: str, data: dict[str, Any], source: str | None = None
    ) -> None:
        """Publish from synchronous code."""
        event = Event(name=event_name, data=data, source=source)
        for handler in list(self._subscribers.get(event_name, [])):
            try:
                result = handler(event)
            except Exception as exc:  # noqa: BLE001 - one handler must not break others.
                LOGGER.error("Event handler failed for %s: %s", event_name, exc)
                continue
            if inspect.isawaitable(result):
                self._schedule(event_name, result)

    def _schedule(self, event_name: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(done: asyncio.Task[Any]) -> None:
            self._pending.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                LOGGER.error("Event handler failed for %s: %s", event_name, exc)

        task.add_done_callback(_done)

    def clear(self, event_name: str | None = None) -> None:
        """Clear subscribers for one event, or for all events."""
        if event_name:
            self._subscribers.pop(event_name, None)
        else:
            self._subscribers.clear()


class EventNotifier:
    """Notifier that turns toasts into ``notify.<level>`` events."""

    def __init__(self, bus: EventBus | None = None, source: str | None = None) -> None:
        self.bus = bus or EventBus()
        self.source = source
        self.history: list[tuple[NotificationLevel, str]] = []

    def info(self, message: str) -> None:
        self._notify("info", message)

    def warning(self, message: str) -> None:
        self._notify("warning", message)

    def error(self, message: str) -> None:
        self._notify("error", message)

    def _notify(self, level: NotificationLevel, message: str) -> None:
        self.history.append((level, message))
        LOGGER.log(
            _LOG_LEVELS[level],
            "notify.%s",
            level,
            extra={"event": f"notify.{level}", "notification": message},
        )
        self.bus.emit(f"notify.{level}", {"message": message}, source=self.source)

"""Named asyncio task registry used to stop in-flight requests."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
import functools
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


async def _settle(tasks: Iterable[asyncio.Task[Any]]) -> None:
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:  # noqa: BLE001 - already reported by _report_failure.
            pass


def _report_failure(name: str, task: asyncio.Task[Any]) -> None:
    if task.cancelled() or task.exception() is None:
        return
    exc = task.exception()
    LOGGER.debug(
        "task.failed",
        extra={
            "event": "task.failed",
            "task": name,
            "error_type": type(exc).__name__,
            "error": str(exc),
        },
    )


class TaskManager:
    """One slot per name, so a newer request can stop the one it supersedes.

    Registering a task under a taken name overwrites the slot without
    cancelling the previous occupant.
    """

    def __init__(self) -> None:
        self._slots: dict[str, asyncio.Task[Any]] = {}

    def add(self, task: asyncio.Task[Any], name: str) -> None:
        self._slots[name] = task
        task.add_done_callback(functools.partial(_report_failure, name))

    def get(self, name: str) -> asyncio.Task[Any] | None:
        return self._slots.get(name)

    def is_running(self, name: str) -> bool:
        task = self._slots.get(name)
        return task is not None and not task.done()

    def cancel_nowait(self, name: str) -> bool:
        """Empty the slot and request cancellation; True if a live task was hit."""
        task = self._slots.pop(name, None)
        if task is None or task.done():
            return False
        task.cancel()
        LOGGER.debug("task.cancelled", extra={"event": "task.cancelled", "task": name})
        return True

    async def cancel(self, name: str) -> None:
        """Cancel the task in ``name`` and wait until it has finished."""
        task = self._slots.get(name)
        if task is not None and self.cancel_nowait(name):
            await _settle([task])

    async def cancel_all(self) -> None:
        live = [task for task in self._slots.values() if not task.done()]
        self._slots.clear()
        for task in live:
            task.cancel()
        await _settle(live)

    def discard(self, name: str, task: asyncio.Task[Any] | None = None) -> None:
        """Empty the slot without cancelling; with ``task``, only if it still holds it."""
        if task is None or self._slots.get(name) is task:
            self._slots.pop(name, None)

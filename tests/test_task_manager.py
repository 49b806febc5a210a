"""Tests for the TaskManager lifecycle helper."""

from __future__ import annotations

import asyncio
import unittest

from chat_reconciler.task_manager import TaskManager


async def _sleeper(cancelled: list[bool]) -> None:
    try:
        await asyncio.sleep(9999)
    except asyncio.CancelledError:
        cancelled.append(True)
        raise


class TaskManagerTests(unittest.IsolatedAsyncioTestCase):
    """Named task registration, cancellation and discard."""

    async def test_cancel_by_name(self) -> None:
        tm = TaskManager()
        cancelled: list[bool] = []
        task = asyncio.create_task(_sleeper(cancelled))
        tm.add(task, name="rewrite")
        await asyncio.sleep(0)  # Let the task start.
        self.assertTrue(tm.is_running("rewrite"))

        await tm.cancel("rewrite")
        self.assertTrue(task.done())
        self.assertTrue(cancelled)
        self.assertIsNone(tm.get("rewrite"))

    async def test_cancel_nonexistent_name_is_noop(self) -> None:
        await TaskManager().cancel("does_not_exist")

    async def test_cancel_nowait_reports_whether_cancelled(self) -> None:
        tm = TaskManager()
        task = asyncio.create_task(_sleeper([]))
        tm.add(task, name="t")
        self.assertTrue(tm.cancel_nowait("t"))
        self.assertFalse(tm.cancel_nowait("t"))
        with self.assertRaises(asyncio.CancelledError):
            await task

    async def test_discard_keeps_newer_task(self) -> None:
        tm = TaskManager()
        old = asyncio.create_task(_sleeper([]))
        new = asyncio.create_task(_sleeper([]))
        tm.add(old, name="t")
        tm.add(new, name="t")
        tm.discard("t", old)
        self.assertIs(tm.get("t"), new)
        tm.discard("t", new)
        self.assertIsNone(tm.get("t"))
        old.cancel()
        new.cancel()
        await asyncio.gather(old, new, return_exceptions=True)

    async def test_cancel_all(self) -> None:
        tm = TaskManager()
        cancelled: list[bool] = []
        for name in ("a", "b"):
            tm.add(asyncio.create_task(_sleeper(cancelled)), name=name)
        await asyncio.sleep(0)
        await tm.cancel_all()
        self.assertEqual(len(cancelled), 2)
        self.assertFalse(tm.is_running("a"))


if __name__ == "__main__":
    unittest.main()

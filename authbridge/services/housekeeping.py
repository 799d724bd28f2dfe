"""Periodic cleanup of expired in-memory entries and persisted device tokens."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Union

logger = logging.getLogger(__name__)

Task = Callable[[], Union[Any, Awaitable[Any]]]

MINOR_INTERVAL_SECONDS = 10 * 60
MAJOR_INTERVAL_SECONDS = 24 * 60 * 60


class Housekeeping:
    """Run registered cleanup tasks on two fixed schedules.

    Minor tasks run every ten minutes, major tasks once a day. A failing task
    is logged and does not stop the others.
    """

    def __init__(
        self,
        *,
        minor_interval: float = MINOR_INTERVAL_SECONDS,
        major_interval: float = MAJOR_INTERVAL_SECONDS,
    ) -> None:
        self._minor_interval = minor_interval
        self._major_interval = major_interval
        self._minor_tasks: List[Task] = []
        self._major_tasks: List[Task] = []
        self._runners: List[asyncio.Task] = []

    def register_minor_task(self, task: Task) -> None:
        if task not in self._minor_tasks:
            self._minor_tasks.append(task)

    def register_major_task(self, task: Task) -> None:
        if task not in self._major_tasks:
            self._major_tasks.append(task)

    async def run_minor(self) -> None:
        await self._execute(self._minor_tasks)

    async def run_major(self) -> None:
        await self._execute(self._major_tasks)

    async def _execute(self, tasks: List[Task]) -> None:
        for task in list(tasks):
            try:
                result = task()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Housekeeping task %r failed", task)

    async def _loop(self, interval: float, runner: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(interval)
            await runner()

    def start(self) -> None:
        if self._runners:
            return
        self._runners = [
            asyncio.create_task(self._loop(self._minor_interval, self.run_minor)),
            asyncio.create_task(self._loop(self._major_interval, self.run_major)),
        ]

    async def stop(self) -> None:
        runners, self._runners = self._runners, []
        for runner in runners:
            runner.cancel()
        for runner in runners:
            try:
                await runner
            except asyncio.CancelledError:
                pass

    @property
    def running(self) -> bool:
        return bool(self._runners)


__all__ = ["Housekeeping"]

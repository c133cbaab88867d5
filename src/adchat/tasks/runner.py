"""In-process async task runner for fire-and-forget maintenance work."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from adchat.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunnerStats:
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0


class TaskRunner:
    """Dispatches registered callables onto the running event loop.

    Sync callables run in a worker thread. A ``key`` keeps at most one task
    per key in flight, so repeated triggers for the same conversation
    collapse into one run.
    """

    def __init__(self, max_concurrent: int | None = None) -> None:
        limit = max_concurrent or int(get_settings().task_runner_max_concurrent)
        self._registry: dict[str, Callable[..., Any]] = {}
        self._max_concurrent = max(1, limit)
        self._semaphore: asyncio.Semaphore | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._keys: set[str] = set()
        self._closed = False
        self.stats = RunnerStats()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def register(self, name: str, func: Callable[..., Any]) -> None:
        self._registry[name] = func

    def registered(self) -> list[str]:
        return sorted(self._registry)

    def send_task(
        self,
        name: str,
        kwargs: dict[str, Any] | None = None,
        *,
        key: str | None = None,
    ) -> bool:
        if self._closed:
            logger.warning("Task runner is shut down; skipping %s", name)
            self.stats.skipped += 1
            return False
        func = self._registry.get(name)
        if func is None:
            logger.error("Unknown task: %s", name)
            return False
        dedupe_key = f"{name}:{key}" if key else None
        if dedupe_key and dedupe_key in self._keys:
            logger.debug("Task %s already in flight; skipping", dedupe_key)
            self.stats.skipped += 1
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop in this thread (CLI helpers, sync tests): run inline.
            self.stats.submitted += 1
            asyncio.run(self._execute(name, func, kwargs or {}, None))
            return True
        if dedupe_key:
            self._keys.add(dedupe_key)
        task = loop.create_task(self._execute(name, func, kwargs or {}, dedupe_key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.stats.submitted += 1
        return True

    async def drain(self, timeout_s: float = 10.0) -> None:
        """Wait for in-flight tasks, including tasks they enqueue while draining."""
        deadline = asyncio.get_running_loop().time() + max(0.1, timeout_s)
        while self._tasks:
            remaining = deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                logger.warning("Task drain timed out with %d tasks pending", len(self._tasks))
                return
            await asyncio.wait(list(self._tasks), timeout=remaining)

    async def shutdown(self, timeout_s: float) -> None:
        self._closed = True
        if not self._tasks:
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*list(self._tasks), return_exceptions=True),
                timeout=max(1.0, float(timeout_s)),
            )
        except TimeoutError:
            logger.warning("Task runner shutdown timed out; cancelling %d tasks", len(self._tasks))
            for task in list(self._tasks):
                task.cancel()

    async def _execute(
        self,
        name: str,
        func: Callable[..., Any],
        payload: dict[str, Any],
        dedupe_key: str | None,
    ) -> None:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrent)
        try:
            async with self._semaphore:
                if inspect.iscoroutinefunction(func):
                    await func(**payload)
                else:
                    result = await asyncio.to_thread(func, **payload)
                    if inspect.isawaitable(result):
                        await result
            self.stats.completed += 1
        except Exception:
            self.stats.failed += 1
            logger.exception("Task failed: %s", name)
        finally:
            if dedupe_key:
                self._keys.discard(dedupe_key)

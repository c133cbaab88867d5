"""Cooperative cancellation for in-flight generation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def watch_disconnect(
    is_disconnected: Callable[[], Awaitable[bool]],
    token: CancellationToken,
    *,
    interval_s: float = 0.25,
) -> None:
    """Poll the transport and cancel ``token`` once the client has gone away."""
    while not token.cancelled:
        if await is_disconnected():
            logger.info("Client disconnected; cancelling generation")
            token.cancel("client_disconnected")
            return
        await asyncio.sleep(interval_s)

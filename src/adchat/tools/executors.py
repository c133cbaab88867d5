"""Tool executors.

Tool bodies live behind an HTTP boundary; this module only curates which
arguments reach them. Per-request behaviour (reference locks, location
truncation) is layered on with :class:`DelegatingExecutor` subclasses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from adchat.config import get_settings
from adchat.errors import ToolError
from adchat.tools.contracts import ToolContract

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolCallContext:
    tool_call_id: str
    owner_id: str
    trace_id: str
    conversation_id: str | None = None
    campaign_id: str | None = None


class ToolExecutor(Protocol):
    def prepare(self, contract: ToolContract, arguments: dict[str, Any]) -> dict[str, Any]:
        """Return the arguments that will be shown to the caller and executed."""
        ...

    async def execute(
        self,
        contract: ToolContract,
        arguments: dict[str, Any],
        context: ToolCallContext,
    ) -> dict[str, Any]: ...


class DelegatingExecutor:
    def __init__(self, inner: ToolExecutor) -> None:
        self.inner = inner

    def prepare(self, contract: ToolContract, arguments: dict[str, Any]) -> dict[str, Any]:
        return self.inner.prepare(contract, arguments)

    async def execute(
        self,
        contract: ToolContract,
        arguments: dict[str, Any],
        context: ToolCallContext,
    ) -> dict[str, Any]:
        return await self.inner.execute(contract, arguments, context)


class HttpToolExecutor:
    """POSTs ``{"arguments", "context"}`` to ``TOOLS_BASE_URL/tools/<name>``."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._transport = transport

    def prepare(self, contract: ToolContract, arguments: dict[str, Any]) -> dict[str, Any]:
        del contract
        return dict(arguments)

    async def execute(
        self,
        contract: ToolContract,
        arguments: dict[str, Any],
        context: ToolCallContext,
    ) -> dict[str, Any]:
        settings = get_settings()
        base_url = (self._base_url or settings.tools_base_url).rstrip("/")
        body = {
            "arguments": arguments,
            "context": {
                "toolCallId": context.tool_call_id,
                "ownerId": context.owner_id,
                "conversationId": context.conversation_id,
                "campaignId": context.campaign_id,
                "traceId": context.trace_id,
            },
        }
        timeout_seconds = max(5, int(settings.tools_timeout_seconds))
        try:
            async with httpx.AsyncClient(
                timeout=timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(f"{base_url}/tools/{contract.name}", json=body)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ToolError(f"{contract.name} failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise ToolError(f"{contract.name} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise ToolError(f"{contract.name} returned a non-object result")
        logger.debug("Tool %s completed (%s)", contract.name, context.tool_call_id)
        return payload

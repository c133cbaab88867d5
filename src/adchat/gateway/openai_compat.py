"""OpenAI-compatible chat completions gateway (streaming over SSE)."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from adchat.config import get_settings
from adchat.errors import GatewayError
from adchat.gateway.base import GatewayEvent, RoundFinished, TextDelta, ToolCallRequest
from adchat.ids import new_id

logger = logging.getLogger(__name__)


class OpenAICompatibleGateway:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        *,
        timeout_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.gateway_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.gateway_api_key
        self._timeout = max(10, int(timeout_seconds or settings.gateway_timeout_seconds))
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @staticmethod
    def _to_tools(tools: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
        if not tools:
            return None
        normalized: list[dict[str, Any]] = []
        for tool in tools:
            name = tool.get("name")
            if not isinstance(name, str) or not name:
                continue
            params = tool.get("parameters")
            function: dict[str, Any] = {
                "name": name,
                "parameters": (
                    params if isinstance(params, dict) else {"type": "object", "properties": {}}
                ),
            }
            description = tool.get("description")
            if isinstance(description, str) and description:
                function["description"] = description
            normalized.append({"type": "function", "function": function})
        return normalized or None

    @staticmethod
    def _coerce_text(value: object) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, list):
            return "".join(
                item if isinstance(item, str) else str(item.get("text", ""))
                for item in value
                if isinstance(item, (str, dict))
            )
        return ""

    @staticmethod
    def _finish_tool_call(pending: dict[str, Any]) -> ToolCallRequest:
        raw = "".join(pending.get("arguments", []))
        call_id = pending.get("id") or new_id("call")
        name = pending.get("name", "")
        if not raw.strip():
            return ToolCallRequest(id=call_id, name=name, arguments={})
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return ToolCallRequest(id=call_id, name=name, raw_arguments=raw)
        if not isinstance(decoded, dict):
            return ToolCallRequest(id=call_id, name=name, raw_arguments=raw)
        return ToolCallRequest(id=call_id, name=name, arguments=decoded)

    async def stream_round(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[GatewayEvent]:
        body: dict[str, Any] = {"model": model, "messages": messages, "stream": True}
        normalized_tools = self._to_tools(tools)
        if normalized_tools is not None:
            body["tools"] = normalized_tools
        pending: dict[int, dict[str, Any]] = {}
        finish_reason = "stop"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST",
                    f"{self._base_url}/chat/completions",
                    headers=self._headers(),
                    content=json.dumps(body),
                ) as response:
                    if response.status_code >= 400:
                        detail = (await response.aread()).decode("utf-8", errors="replace")[:500]
                        raise GatewayError(
                            f"gateway returned {response.status_code}: {detail}",
                            retryable=response.status_code >= 500 or response.status_code == 429,
                        )
                    async for raw in response.aiter_lines():
                        line = raw.strip()
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:") :].strip()
                        if data == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data)
                        except json.JSONDecodeError:
                            continue
                        choices = chunk.get("choices") if isinstance(chunk, dict) else None
                        if not isinstance(choices, list) or not choices:
                            continue
                        choice = choices[0]
                        if not isinstance(choice, dict):
                            continue
                        delta = choice.get("delta")
                        if isinstance(delta, dict):
                            text = self._coerce_text(delta.get("content"))
                            if text:
                                yield TextDelta(text=text)
                            for call in delta.get("tool_calls") or []:
                                if not isinstance(call, dict):
                                    continue
                                slot = pending.setdefault(
                                    int(call.get("index", 0)), {"arguments": []}
                                )
                                if call.get("id"):
                                    slot["id"] = str(call["id"])
                                fn = call.get("function")
                                if isinstance(fn, dict):
                                    if fn.get("name"):
                                        slot["name"] = str(fn["name"])
                                    if isinstance(fn.get("arguments"), str):
                                        slot["arguments"].append(fn["arguments"])
                        if choice.get("finish_reason"):
                            finish_reason = str(choice["finish_reason"])
        except httpx.TimeoutException as exc:
            raise GatewayError("gateway stream timed out") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"gateway request failed: {exc}") from exc

        for index in sorted(pending):
            yield self._finish_tool_call(pending[index])
        yield RoundFinished(finish_reason=finish_reason)

    async def complete(self, model: str, messages: list[dict[str, Any]]) -> str:
        body = {"model": model, "messages": messages, "stream": False}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/chat/completions",
                    headers=self._headers(),
                    content=json.dumps(body),
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise GatewayError(f"gateway request failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayError("gateway returned invalid JSON", retryable=False) from exc
        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise GatewayError("gateway response missing choices", retryable=False)
        message = choices[0].get("message")
        if not isinstance(message, dict):
            raise GatewayError("gateway response message missing", retryable=False)
        return self._coerce_text(message.get("content")).strip()

    async def health_check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.get(f"{self._base_url}/models", headers=self._headers())
            return response.status_code < 400
        except httpx.HTTPError:
            logger.warning("Gateway health check failed", exc_info=True)
            return False

"""Bounded multi-round tool-calling loop against the model gateway."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from typing import Any

from pydantic import ValidationError

from adchat.chat.cancellation import CancellationToken
from adchat.chat.policy import PolicyDecision, ToolPolicyGate
from adchat.errors import GatewayError, GenerationError, ToolError
from adchat.events.models import BudgetExhausted, GenerationFailure
from adchat.events.sink import EventSink
from adchat.gateway.base import ModelGateway, RoundFinished, TextDelta, ToolCallRequest
from adchat.ids import new_id
from adchat.models import Turn, text_part, tool_call_part, tool_result_part
from adchat.tools.contracts import ToolContract
from adchat.tools.executors import ToolCallContext, ToolExecutor
from adchat.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

FALLBACK_MESSAGES: dict[str, str] = {
    "unknown_tool": "The model tried to call an unknown tool. Please try again.",
    "invalid_tool_input": "The model called a tool with invalid inputs. Please try again.",
    "tool_repair_failed": "Tool call repair failed. Please try again.",
    "unclassified": "An error occurred during AI generation. Please try again.",
}

FINISH_STOP = "stop"
FINISH_AWAITING_CONFIRMATION = "awaiting-confirmation"
FINISH_BUDGET = "budget"
FINISH_CANCELLED = "cancelled"
FINISH_ERROR = "error"

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def repair_arguments(raw: str) -> dict[str, Any] | None:
    """Best-effort fix for near-JSON tool arguments (code fences, trailing commas)."""
    text = _FENCE.sub("", raw.strip())
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    text = _TRAILING_COMMA.sub(r"\1", text[start : end + 1])
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        return None
    return decoded if isinstance(decoded, dict) else None


@dataclass(slots=True)
class CoordinatorResult:
    turn: Turn
    finish_reason: str = FINISH_STOP
    rounds: int = 0
    error_kind: str | None = None
    violations: int = 0

    def append_text(self, delta: str) -> None:
        parts = self.turn.parts
        if parts and parts[-1].type == "text":
            parts[-1].text += delta
        else:
            parts.append(text_part(delta))


@dataclass(slots=True)
class _PreparedCall:
    request: ToolCallRequest
    contract: ToolContract
    arguments: dict[str, Any] = field(default_factory=dict)


class ExecutionCoordinator:
    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolRegistry,
        gate: ToolPolicyGate,
        sink: EventSink,
        *,
        max_rounds: int = 5,
    ) -> None:
        self.gateway = gateway
        self.registry = registry
        self.gate = gate
        self._sink = sink
        self.max_rounds = max(1, max_rounds)

    @staticmethod
    def new_result(message_id: str | None = None) -> CoordinatorResult:
        return CoordinatorResult(turn=Turn(id=message_id or new_id("msg"), role="assistant"))

    async def run(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        decision: PolicyDecision,
        executor: ToolExecutor,
        call_context: ToolCallContext,
        token: CancellationToken,
        result: CoordinatorResult,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield stream parts; ``result`` accumulates the assistant turn as it goes."""
        transcript = list(messages)
        tools = self.registry.schemas(decision.tool_names)
        try:
            for round_index in range(self.max_rounds):
                if token.cancelled:
                    result.finish_reason = FINISH_CANCELLED
                    return
                result.rounds = round_index + 1
                round_text: list[str] = []
                requests: list[ToolCallRequest] = []
                stream = self.gateway.stream_round(model, transcript, tools or None)
                async with aclosing(stream):  # type: ignore[type-var]
                    async for event in stream:
                        if token.cancelled:
                            break
                        if isinstance(event, TextDelta):
                            round_text.append(event.text)
                            result.append_text(event.text)
                            yield {"type": "text-delta", "delta": event.text}
                        elif isinstance(event, ToolCallRequest):
                            requests.append(event)
                        elif isinstance(event, RoundFinished):
                            break
                if token.cancelled:
                    result.finish_reason = FINISH_CANCELLED
                    return
                if not requests:
                    result.finish_reason = FINISH_STOP
                    return

                if self.gate.check_round(
                    decision,
                    [request.name for request in requests],
                    round_index=round_index,
                    conversation_id=call_context.conversation_id,
                    trace_id=call_context.trace_id,
                ):
                    result.violations += 1
                prepared = self._prepare_round(requests, decision, executor, call_context)

                transcript.append(
                    {
                        "role": "assistant",
                        "content": "".join(round_text) or None,
                        "tool_calls": [
                            {
                                "id": call.request.id,
                                "type": "function",
                                "function": {
                                    "name": call.contract.name,
                                    "arguments": json.dumps(call.arguments),
                                },
                            }
                            for call in prepared
                        ],
                    }
                )
                for call in prepared:
                    result.turn.parts.append(
                        tool_call_part(call.request.id, call.contract.name, call.arguments)
                    )
                    yield {
                        "type": "tool-call",
                        "toolCallId": call.request.id,
                        "toolName": call.contract.name,
                        "input": call.arguments,
                        "requiresConfirmation": call.contract.requires_confirmation,
                    }

                awaiting = False
                for call in prepared:
                    if call.contract.requires_confirmation:
                        awaiting = True
                        continue
                    if token.cancelled:
                        result.finish_reason = FINISH_CANCELLED
                        return
                    output, is_error = await self._execute(call, executor, call_context)
                    result.turn.parts.append(
                        tool_result_part(
                            call.request.id, call.contract.name, output, is_error=is_error
                        )
                    )
                    transcript.append(
                        {
                            "role": "tool",
                            "tool_call_id": call.request.id,
                            "content": json.dumps(output),
                        }
                    )
                    yield {
                        "type": "tool-result",
                        "toolCallId": call.request.id,
                        "toolName": call.contract.name,
                        "output": output,
                        "isError": is_error,
                    }
                if awaiting:
                    result.finish_reason = FINISH_AWAITING_CONFIRMATION
                    return

            result.finish_reason = FINISH_BUDGET
            logger.warning("Tool round budget (%d) exhausted", self.max_rounds)
            self._sink.emit(
                BudgetExhausted(
                    conversation_id=call_context.conversation_id,
                    trace_id=call_context.trace_id,
                    rounds=self.max_rounds,
                    pending_tools=[
                        part.tool_name for part in result.turn.parts if part.type == "tool-call"
                    ][-3:],
                )
            )
        except GenerationError as exc:
            yield self._failure(exc.kind, str(exc), call_context, result)
        except GatewayError as exc:
            yield self._failure("unclassified", str(exc), call_context, result)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected generation failure")
            yield self._failure("unclassified", repr(exc), call_context, result)

    def _prepare_round(
        self,
        requests: list[ToolCallRequest],
        decision: PolicyDecision,
        executor: ToolExecutor,
        call_context: ToolCallContext,
    ) -> list[_PreparedCall]:
        """Admit, repair, rewrite and validate every call of a round.

        Nothing from the round runs unless every call passes.
        """
        prepared: list[_PreparedCall] = []
        for request in requests:
            contract = self.registry.get(request.name)
            if contract is None or not decision.admits(request.name):
                self.gate.reject(
                    decision,
                    request.name,
                    conversation_id=call_context.conversation_id,
                    trace_id=call_context.trace_id,
                )
                raise GenerationError(
                    f"tool {request.name!r} is not available", kind="unknown_tool"
                )
            arguments = request.arguments
            if request.raw_arguments is not None:
                repaired = repair_arguments(request.raw_arguments)
                if repaired is None:
                    raise GenerationError(
                        f"could not repair arguments for {request.name}: "
                        f"{request.raw_arguments[:200]!r}",
                        kind="tool_repair_failed",
                    )
                logger.info("Repaired malformed arguments for %s", request.name)
                arguments = repaired
            arguments = executor.prepare(contract, arguments)
            try:
                arguments = contract.validate_input(arguments)
            except ValidationError as exc:
                raise GenerationError(
                    f"invalid input for {request.name}: {exc}", kind="invalid_tool_input"
                ) from exc
            prepared.append(_PreparedCall(request=request, contract=contract, arguments=arguments))
        return prepared

    async def _execute(
        self,
        call: _PreparedCall,
        executor: ToolExecutor,
        call_context: ToolCallContext,
    ) -> tuple[dict[str, Any], bool]:
        context = replace(call_context, tool_call_id=call.request.id)
        try:
            return await executor.execute(call.contract, call.arguments, context), False
        except ToolError as exc:
            logger.warning("Tool %s failed: %s", call.contract.name, exc)
            return {"success": False, "error": str(exc)}, True

    def _failure(
        self,
        kind: str,
        detail: str,
        call_context: ToolCallContext,
        result: CoordinatorResult,
    ) -> dict[str, Any]:
        logger.error("Generation failed (%s): %s", kind, detail)
        self._sink.emit(
            GenerationFailure(
                conversation_id=call_context.conversation_id,
                trace_id=call_context.trace_id,
                kind=kind,
                detail=detail[:500],
            )
        )
        result.finish_reason = FINISH_ERROR
        result.error_kind = kind
        text = FALLBACK_MESSAGES.get(kind, FALLBACK_MESSAGES["unclassified"])
        return {"type": "error", "errorText": text}

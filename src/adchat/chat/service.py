"""One conversation turn: resolve, load, validate, decide policy, execute, persist."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from adchat.chat.cancellation import CancellationToken
from adchat.chat.coordinator import FINISH_CANCELLED, CoordinatorResult, ExecutionCoordinator
from adchat.chat.identity import IdentityResolver
from adchat.chat.locking import LockedParameters, build_lock, wrap_executor
from adchat.chat.metadata import TurnContext, parse_turn_context
from adchat.chat.persistence import PersistenceWriter
from adchat.chat.policy import PolicyDecision, ToolPolicyGate, wrap_location_executor
from adchat.chat.prompts import build_system_prompt, to_gateway_messages
from adchat.chat.validation import MessageValidator, turn_from_payload
from adchat.chat.window import WindowLoader
from adchat.config import Settings, get_settings
from adchat.db.connection import get_conn
from adchat.db.queries import get_summary
from adchat.errors import MessageValidationError
from adchat.events.sink import EventSink, build_event_sink
from adchat.gateway.base import ModelGateway
from adchat.gateway.factory import build_gateway
from adchat.ids import new_id
from adchat.logging import bind_context
from adchat.models import Conversation, Turn
from adchat.tools.executors import HttpToolExecutor, ToolCallContext, ToolExecutor
from adchat.tools.registry import ToolRegistry, build_default_registry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PreparedTurn:
    trace_id: str
    owner_id: str
    model: str
    conversation: Conversation | None
    new_turn: Turn
    context: TurnContext
    lock: LockedParameters | None
    decision: PolicyDecision
    messages: list[dict[str, Any]]
    executor: ToolExecutor
    degraded: bool = False


class ChatService:
    def __init__(
        self,
        *,
        gateway: ModelGateway,
        executor: ToolExecutor,
        registry: ToolRegistry | None = None,
        sink: EventSink | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry or build_default_registry()
        self.sink = sink or build_event_sink()
        self.base_executor = executor
        self.resolver = IdentityResolver()
        self.loader = WindowLoader(limit=int(self.settings.history_window_limit))
        self.validator = MessageValidator(self.registry)
        self.gate = ToolPolicyGate(self.registry, self.sink)
        self.coordinator = ExecutionCoordinator(
            gateway,
            self.registry,
            self.gate,
            self.sink,
            max_rounds=int(self.settings.max_tool_rounds),
        )
        self.writer = PersistenceWriter(self.sink)

    async def prepare(
        self,
        *,
        owner_id: str,
        message: dict[str, Any],
        conversation_id: str | None = None,
        model: str | None = None,
    ) -> PreparedTurn:
        """Everything up to generation. Identity errors surface here, before streaming."""
        trace_id = new_id("trc")
        bind_context(trace_id=trace_id)
        new_turn = turn_from_payload(
            message, sanitize=int(self.settings.message_sanitizer_enabled) == 1
        )
        if new_turn.role != "user":
            raise MessageValidationError(
                f"inbound message must have role 'user', got {new_turn.role!r}"
            )
        conversation = await self.resolver.resolve(conversation_id, new_turn.metadata, owner_id)
        conv_id = conversation.id if conversation else None
        bind_context(conversation_id=conv_id)

        history: list[Turn] = []
        summary: str | None = None
        if conversation is not None:
            history = await self.loader.load(conversation.id)
            summary = await asyncio.to_thread(self._summary_text, conversation.id)
        turns, degraded = self.validator.prepare_context(
            history, new_turn, sink=self.sink, conversation_id=conv_id, trace_id=trace_id
        )

        context = parse_turn_context(
            new_turn.metadata, conversation.metadata if conversation else None
        )
        lock = build_lock(
            context.edit_reference,
            context.rejected_reference,
            sink=self.sink,
            conversation_id=conv_id,
            trace_id=trace_id,
        )
        decision = self.gate.decide(context.step, lock)
        executor = wrap_executor(
            wrap_location_executor(
                self.base_executor,
                context.location_setup,
                sink=self.sink,
                conversation_id=conv_id,
                trace_id=trace_id,
            ),
            lock,
            sink=self.sink,
            conversation_id=conv_id,
            trace_id=trace_id,
        )
        system_prompt = build_system_prompt(context, decision, summary=summary)
        logger.info(
            "Prepared turn: step=%s categories=%s locked=%s history=%d degraded=%s",
            context.step.current_step or "-",
            ",".join(sorted(category.value for category in decision.categories)),
            lock.variation_index if lock else "-",
            len(history),
            degraded,
        )
        return PreparedTurn(
            trace_id=trace_id,
            owner_id=owner_id,
            model=model or self.settings.default_model,
            conversation=conversation,
            new_turn=new_turn,
            context=context,
            lock=lock,
            decision=decision,
            messages=to_gateway_messages(turns, system_prompt),
            executor=executor,
            degraded=degraded,
        )

    async def stream(
        self,
        prepared: PreparedTurn,
        token: CancellationToken | None = None,
        result: CoordinatorResult | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        token = token or CancellationToken()
        result = result or self.coordinator.new_result()
        conversation = prepared.conversation
        call_context = ToolCallContext(
            tool_call_id="",
            owner_id=prepared.owner_id,
            trace_id=prepared.trace_id,
            conversation_id=conversation.id if conversation else None,
            campaign_id=(conversation.campaign_id if conversation else None)
            or prepared.context.campaign_id,
        )
        finished = False
        try:
            yield {
                "type": "start",
                "messageId": result.turn.id,
                "conversationId": call_context.conversation_id,
            }
            async for part in self.coordinator.run(
                model=prepared.model,
                messages=prepared.messages,
                decision=prepared.decision,
                executor=prepared.executor,
                call_context=call_context,
                token=token,
                result=result,
            ):
                yield part
            yield {"type": "finish", "finishReason": result.finish_reason}
            finished = result.finish_reason != FINISH_CANCELLED
            if finished and conversation is not None:
                await self.writer.commit(
                    conversation, [prepared.new_turn, result.turn], trace_id=prepared.trace_id
                )
        finally:
            if not finished and conversation is not None:
                # Disconnect or cancellation: keep what was produced without holding up teardown.
                self.writer.commit_in_background(
                    conversation, [prepared.new_turn, result.turn], trace_id=prepared.trace_id
                )

    @staticmethod
    def _summary_text(conversation_id: str) -> str | None:
        with get_conn() as conn:
            summary = get_summary(conn, conversation_id)
        return summary["summary"] if summary else None


def build_chat_service(settings: Settings | None = None) -> ChatService:
    settings = settings or get_settings()
    return ChatService(
        gateway=build_gateway(settings),
        executor=HttpToolExecutor(settings.tools_base_url),
        sink=build_event_sink(),
        settings=settings,
    )

"""Reference locks: pin edit tools to the artifact the user is editing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from adchat.chat.metadata import EditCategory, EditReference
from adchat.events.models import LockApplied, LockRejected
from adchat.events.sink import EventSink
from adchat.tools.contracts import MutationKind, ToolCategory, ToolContract
from adchat.tools.executors import DelegatingExecutor, ToolCallContext, ToolExecutor

logger = logging.getLogger(__name__)

_LOCKED_MUTATIONS: dict[EditCategory, frozenset[MutationKind]] = {
    EditCategory.IMAGE: frozenset({MutationKind.IMAGE_EDIT, MutationKind.IMAGE_REGENERATE}),
    EditCategory.COPY: frozenset({MutationKind.COPY_EDIT}),
}

_REFERENCE_TOOL_CATEGORY: dict[EditCategory, ToolCategory] = {
    EditCategory.IMAGE: ToolCategory.CREATIVE,
    EditCategory.COPY: ToolCategory.COPY,
}


@dataclass(frozen=True, slots=True)
class LockedParameters:
    variation_index: int
    category: EditCategory
    locator: str | None = None
    session_id: str | None = None

    @classmethod
    def from_reference(cls, reference: EditReference) -> LockedParameters:
        return cls(
            variation_index=reference.variation_index,
            category=reference.category,
            locator=reference.locator,
            session_id=reference.session_id,
        )

    @property
    def tool_category(self) -> ToolCategory:
        return _REFERENCE_TOOL_CATEGORY[self.category]

    def applies_to(self, contract: ToolContract) -> bool:
        return contract.mutation in _LOCKED_MUTATIONS[self.category]

    def enforce(self, contract: ToolContract, arguments: dict[str, Any]) -> dict[str, Any]:
        enforced = {**arguments, "variationIndex": self.variation_index}
        if contract.mutation is MutationKind.IMAGE_EDIT and self.locator:
            enforced["imageUrl"] = self.locator
        return enforced

    def annotate(self, result: dict[str, Any]) -> dict[str, Any]:
        annotated = {**result, "variationIndex": self.variation_index}
        if self.session_id:
            annotated["sessionId"] = self.session_id
        return annotated


class LockingExecutor(DelegatingExecutor):
    """Overwrites index/locator of matching mutation tools before and during execution.

    Built per request; holds no state beyond the lock itself.
    """

    def __init__(
        self,
        inner: ToolExecutor,
        lock: LockedParameters,
        *,
        sink: EventSink,
        conversation_id: str | None,
        trace_id: str,
    ) -> None:
        super().__init__(inner)
        self.lock = lock
        self._sink = sink
        self._conversation_id = conversation_id
        self._trace_id = trace_id

    def prepare(self, contract: ToolContract, arguments: dict[str, Any]) -> dict[str, Any]:
        prepared = self.inner.prepare(contract, arguments)
        if not self.lock.applies_to(contract):
            return prepared
        proposed = prepared.get("variationIndex")
        if proposed != self.lock.variation_index:
            logger.info(
                "Lock overrode %s variationIndex %r -> %d",
                contract.name,
                proposed,
                self.lock.variation_index,
            )
        self._sink.emit(
            LockApplied(
                conversation_id=self._conversation_id,
                trace_id=self._trace_id,
                tool=contract.name,
                variation_index=self.lock.variation_index,
                proposed_index=proposed,
                session_id=self.lock.session_id,
            )
        )
        return self.lock.enforce(contract, prepared)

    async def execute(
        self,
        contract: ToolContract,
        arguments: dict[str, Any],
        context: ToolCallContext,
    ) -> dict[str, Any]:
        if not self.lock.applies_to(contract):
            return await self.inner.execute(contract, arguments, context)
        result = await self.inner.execute(contract, self.lock.enforce(contract, arguments), context)
        return self.lock.annotate(result)


def build_lock(
    reference: EditReference | None,
    rejected: tuple[Any, str] | None,
    *,
    sink: EventSink,
    conversation_id: str | None,
    trace_id: str,
) -> LockedParameters | None:
    if reference is not None:
        return LockedParameters.from_reference(reference)
    if rejected is not None:
        raw_index, reason = rejected
        logger.warning("Ignoring edit reference with unusable index %r (%s)", raw_index, reason)
        sink.emit(
            LockRejected(
                conversation_id=conversation_id,
                trace_id=trace_id,
                raw_index=raw_index,
                reason=reason,
            )
        )
    return None


def wrap_executor(
    inner: ToolExecutor,
    lock: LockedParameters | None,
    *,
    sink: EventSink,
    conversation_id: str | None,
    trace_id: str,
) -> ToolExecutor:
    if lock is None:
        return inner
    return LockingExecutor(
        inner, lock, sink=sink, conversation_id=conversation_id, trace_id=trace_id
    )

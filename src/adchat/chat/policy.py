"""Tool policy gate: which tool categories a turn may use."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from adchat.chat.locking import LockedParameters
from adchat.chat.metadata import LocationSetup, StepContext
from adchat.events.models import LocationTruncated, PolicyViolation, ToolRejected
from adchat.events.sink import EventSink
from adchat.tools.contracts import ALL_CATEGORIES, ToolCategory, ToolContract
from adchat.tools.executors import DelegatingExecutor, ToolExecutor
from adchat.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

STEP_CATEGORIES: dict[str, frozenset[ToolCategory]] = {
    "goal": frozenset({ToolCategory.GOAL}),
    "ads": frozenset({ToolCategory.CREATIVE}),
    "copy": frozenset({ToolCategory.COPY}),
    "location": frozenset({ToolCategory.TARGETING}),
    "audience": frozenset({ToolCategory.TARGETING}),
    "destination": frozenset({ToolCategory.CAMPAIGN_MANAGEMENT}),
    "budget": frozenset({ToolCategory.CAMPAIGN_MANAGEMENT}),
    "preview": frozenset({ToolCategory.CAMPAIGN_MANAGEMENT}),
    "publish": frozenset({ToolCategory.CAMPAIGN_MANAGEMENT}),
}

# Creative work and campaign build-out must not happen in the same round.
CREATIVE_GROUP = frozenset({ToolCategory.CREATIVE, ToolCategory.COPY})
BUILD_GROUP = frozenset({ToolCategory.CAMPAIGN_MANAGEMENT, ToolCategory.TARGETING})


def spans_exclusive_groups(categories: Iterable[ToolCategory]) -> bool:
    present = set(categories)
    return bool(present & CREATIVE_GROUP) and bool(present & BUILD_GROUP)


def admissible_categories(
    step: StepContext,
    lock: LockedParameters | None = None,
) -> frozenset[ToolCategory]:
    """Pure function of the step and the edit lock.

    An edit lock takes precedence over the step: the turn is an edit of
    one artifact, so only that artifact's category is admitted.
    """
    if lock is not None:
        return frozenset({lock.tool_category})
    if step.current_step and step.current_step in STEP_CATEGORIES:
        return STEP_CATEGORIES[step.current_step]
    return ALL_CATEGORIES


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    step: str | None
    categories: frozenset[ToolCategory]
    tool_names: tuple[str, ...]
    gated: bool

    def admits(self, tool_name: str) -> bool:
        return tool_name in self.tool_names


class ToolPolicyGate:
    def __init__(self, registry: ToolRegistry, sink: EventSink) -> None:
        self.registry = registry
        self._sink = sink

    def decide(self, step: StepContext, lock: LockedParameters | None = None) -> PolicyDecision:
        categories = admissible_categories(step, lock)
        names = tuple(contract.name for contract in self.registry.in_categories(categories))
        return PolicyDecision(
            step=step.current_step,
            categories=categories,
            tool_names=names,
            gated=categories != ALL_CATEGORIES,
        )

    def reject(
        self,
        decision: PolicyDecision,
        tool_name: str,
        *,
        conversation_id: str | None,
        trace_id: str,
    ) -> None:
        reason = "unknown tool" if self.registry.get(tool_name) is None else "not admitted"
        logger.warning(
            "Rejected tool call %s at step %s (%s)", tool_name, decision.step or "-", reason
        )
        self._sink.emit(
            ToolRejected(
                conversation_id=conversation_id,
                trace_id=trace_id,
                tool=tool_name,
                step=decision.step,
                reason=reason,
            )
        )

    def check_round(
        self,
        decision: PolicyDecision,
        tool_names: list[str],
        *,
        round_index: int,
        conversation_id: str | None,
        trace_id: str,
    ) -> bool:
        """Flag creative/copy calls mixed with build calls in one round.

        Recorded as a violation; the turn is not aborted. Returns True when flagged.
        """
        contracts = [c for c in (self.registry.get(name) for name in tool_names) if c is not None]
        categories = {contract.category for contract in contracts}
        if not spans_exclusive_groups(categories):
            return False
        self._sink.emit(
            PolicyViolation(
                conversation_id=conversation_id,
                trace_id=trace_id,
                step=decision.step,
                round_index=round_index,
                categories=sorted(category.value for category in categories),
                tools=list(tool_names),
            )
        )
        return True


class LocationRestrictingExecutor(DelegatingExecutor):
    """Forces ``addLocations`` down to the single location the user typed."""

    TOOL_NAME = "addLocations"

    def __init__(
        self,
        inner: ToolExecutor,
        setup: LocationSetup,
        *,
        sink: EventSink,
        conversation_id: str | None,
        trace_id: str,
    ) -> None:
        super().__init__(inner)
        self.setup = setup
        self._sink = sink
        self._conversation_id = conversation_id
        self._trace_id = trace_id

    def prepare(self, contract: ToolContract, arguments: dict[str, Any]) -> dict[str, Any]:
        prepared = self.inner.prepare(contract, arguments)
        if contract.name != self.TOOL_NAME:
            return prepared
        proposed = prepared.get("locations")
        proposed_list = proposed if isinstance(proposed, list) else []
        first = next((item for item in proposed_list if isinstance(item, dict)), {})
        location = {**first, "name": self.setup.location, "mode": self.setup.mode}
        proposed_names = [
            str(item.get("name")) for item in proposed_list if isinstance(item, dict)
        ]
        if proposed_names != [self.setup.location]:
            logger.info(
                "Truncated addLocations %s to %r", proposed_names, self.setup.location
            )
            self._sink.emit(
                LocationTruncated(
                    conversation_id=self._conversation_id,
                    trace_id=self._trace_id,
                    location=self.setup.location,
                    proposed=proposed_names,
                )
            )
        return {**prepared, "locations": [location]}


def wrap_location_executor(
    inner: ToolExecutor,
    setup: LocationSetup | None,
    *,
    sink: EventSink,
    conversation_id: str | None,
    trace_id: str,
) -> ToolExecutor:
    if setup is None:
        return inner
    return LocationRestrictingExecutor(
        inner, setup, sink=sink, conversation_id=conversation_id, trace_id=trace_id
    )


def _check_step_table() -> None:
    for step, categories in STEP_CATEGORIES.items():
        if spans_exclusive_groups(categories):
            raise RuntimeError(f"step {step!r} admits mutually exclusive categories")


_check_step_table()

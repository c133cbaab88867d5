import pytest

from adchat.chat.locking import LockedParameters
from adchat.chat.metadata import EditCategory, LocationSetup, StepContext
from adchat.chat.policy import (
    LocationRestrictingExecutor,
    STEP_CATEGORIES,
    ToolPolicyGate,
    admissible_categories,
    spans_exclusive_groups,
)
from adchat.events.sink import RecordingEventSink
from adchat.tools.contracts import ALL_CATEGORIES, ToolCategory
from adchat.tools.registry import build_default_registry

REGISTRY = build_default_registry()


def test_unknown_or_missing_step_admits_everything() -> None:
    assert admissible_categories(StepContext()) == ALL_CATEGORIES
    assert admissible_categories(StepContext(current_step="checkout")) == ALL_CATEGORIES


@pytest.mark.parametrize(
    ("step", "category"),
    [
        ("ads", ToolCategory.CREATIVE),
        ("copy", ToolCategory.COPY),
        ("location", ToolCategory.TARGETING),
        ("goal", ToolCategory.GOAL),
        ("budget", ToolCategory.CAMPAIGN_MANAGEMENT),
    ],
)
def test_step_table(step: str, category: ToolCategory) -> None:
    assert admissible_categories(StepContext(current_step=step)) == frozenset({category})


def test_no_step_mixes_exclusive_groups() -> None:
    for categories in STEP_CATEGORIES.values():
        assert not spans_exclusive_groups(categories)


def test_edit_lock_overrides_step() -> None:
    lock = LockedParameters(variation_index=0, category=EditCategory.COPY)
    categories = admissible_categories(StepContext(current_step="ads"), lock)
    assert categories == frozenset({ToolCategory.COPY})


def test_decision_lists_admitted_tools() -> None:
    gate = ToolPolicyGate(REGISTRY, RecordingEventSink())
    decision = gate.decide(StepContext(current_step="location"))
    assert decision.gated is True
    assert set(decision.tool_names) == {"addLocations", "removeLocation", "clearLocations"}
    assert decision.admits("addLocations")
    assert not decision.admits("generateVariations")


def test_mixed_round_is_flagged_not_blocked() -> None:
    sink = RecordingEventSink()
    gate = ToolPolicyGate(REGISTRY, sink)
    decision = gate.decide(StepContext())
    flagged = gate.check_round(
        decision,
        ["generateVariations", "createAd"],
        round_index=0,
        conversation_id="cnv_1",
        trace_id="trc_1",
    )
    assert flagged is True
    [event] = sink.of_type("policy.violation")
    assert event.categories == ["campaign_management", "creative"]

    assert not gate.check_round(
        decision, ["generateVariations"], round_index=1, conversation_id=None, trace_id="t"
    )


def test_reject_records_reason() -> None:
    sink = RecordingEventSink()
    gate = ToolPolicyGate(REGISTRY, sink)
    decision = gate.decide(StepContext(current_step="copy"))
    gate.reject(decision, "generateVariations", conversation_id=None, trace_id="t")
    gate.reject(decision, "launchRocket", conversation_id=None, trace_id="t")
    reasons = [event.reason for event in sink.of_type("policy.tool_rejected")]
    assert reasons == ["not admitted", "unknown tool"]


def test_location_setup_truncates_to_typed_location(recording_executor) -> None:
    sink = RecordingEventSink()
    executor = LocationRestrictingExecutor(
        recording_executor(),
        LocationSetup(location="Toronto"),
        sink=sink,
        conversation_id="cnv_1",
        trace_id="trc_1",
    )
    prepared = executor.prepare(
        REGISTRY.get("addLocations"),
        {
            "locations": [
                {"name": "Toronto", "type": "city"},
                {"name": "Ontario", "type": "region"},
            ]
        },
    )
    assert prepared["locations"] == [{"name": "Toronto", "type": "city", "mode": "include"}]
    [event] = sink.of_type("policy.location_truncated")
    assert event.proposed == ["Toronto", "Ontario"]


def test_location_setup_ignores_other_tools(recording_executor) -> None:
    executor = LocationRestrictingExecutor(
        recording_executor(),
        LocationSetup(location="Toronto"),
        sink=RecordingEventSink(),
        conversation_id=None,
        trace_id="t",
    )
    args = {"name": "Ontario"}
    assert executor.prepare(REGISTRY.get("removeLocation"), args) == args

import json

from adchat.chat.metadata import parse_turn_context
from adchat.chat.policy import ToolPolicyGate
from adchat.chat.prompts import SUMMARY_PREFIX, build_system_prompt, to_gateway_messages
from adchat.events.sink import RecordingEventSink
from adchat.models import Turn, text_part, tool_call_part, tool_result_part
from adchat.tools.registry import build_default_registry

GATE = ToolPolicyGate(build_default_registry(), RecordingEventSink())


def test_default_prompt_lists_admitted_tools_and_goal() -> None:
    context = parse_turn_context({"currentStep": "copy"}, {"current_goal": "calls"})
    prompt = build_system_prompt(context, GATE.decide(context.step), summary="Chose blue theme.")
    assert prompt.startswith(SUMMARY_PREFIX)
    assert "Campaign goal: CALLS." in prompt
    assert "Current step: copy." in prompt
    assert "generateCopyVariations" in prompt
    assert "generateVariations," not in prompt


def test_location_setup_prompt_names_single_location() -> None:
    context = parse_turn_context({"locationSetupMode": True, "locationInput": "Toronto"})
    prompt = build_system_prompt(context, GATE.decide(context.step))
    assert prompt.startswith("LOCATION SETUP MODE.")
    assert '"Toronto"' in prompt


def test_edit_prompt_describes_reference() -> None:
    context = parse_turn_context(
        {
            "editingReference": {
                "variationNumber": 3,
                "imageUrl": "https://cdn/v2.png",
                "variationTitle": "Variation 3",
            }
        }
    )
    prompt = build_system_prompt(context, GATE.decide(context.step))
    assert prompt.startswith("EDITING MODE.")
    assert "Variation index: 2" in prompt
    assert "https://cdn/v2.png" in prompt


def test_gateway_messages_pair_calls_with_results() -> None:
    turns = [
        Turn(id="u1", role="user", parts=[text_part("add Toronto")]),
        Turn(
            id="a1",
            role="assistant",
            parts=[
                text_part("Adding."),
                tool_call_part("c1", "addLocations", {"locations": [{"name": "Toronto"}]}),
                tool_call_part("c2", "selectVariation", {"variationIndex": 0}),
                tool_result_part("c2", "selectVariation", {"success": True}),
            ],
        ),
        Turn(id="u2", role="user", parts=[text_part("thanks")]),
    ]
    messages = to_gateway_messages(turns, "sys")

    assert [message["role"] for message in messages] == [
        "system",
        "user",
        "assistant",
        "tool",
        "tool",
        "user",
    ]
    assert messages[2]["content"] == "Adding."
    assert [call["id"] for call in messages[2]["tool_calls"]] == ["c1", "c2"]
    assert json.loads(messages[3]["content"]) == {"status": "awaiting_confirmation"}
    assert json.loads(messages[4]["content"]) == {"success": True}

"""System prompt assembly and conversion of turns into gateway messages."""

from __future__ import annotations

import json
from typing import Any

from adchat.chat.metadata import EditCategory, EditReference, TurnContext
from adchat.chat.policy import PolicyDecision
from adchat.models import PART_TOOL_CALL, PART_TOOL_RESULT, Part, Turn

GOAL_GUIDANCE: dict[str, str] = {
    "calls": (
        "The campaign is optimized for PHONE CALLS. Favour trust signals, real people and "
        'direct calls to action such as "Call Now" or "Speak to an Expert".'
    ),
    "leads": (
        "The campaign is optimized for LEAD GENERATION through forms. Make the value "
        'exchange explicit ("Free quote", "Just 2 minutes") and keep friction low.'
    ),
    "website-visits": (
        "The campaign is optimized for WEBSITE VISITS. Show browsing and discovery and use "
        'calls to action such as "Shop Now" or "Explore More".'
    ),
}

STEP_GUIDANCE: dict[str, str] = {
    "goal": "Help the user pick a campaign goal and call setupGoal once it is clear.",
    "ads": (
        "Creative step: generate or edit ad images. Never touch targeting or campaign "
        "structure here."
    ),
    "copy": "Copy step: only edit text (primary text, headline, description).",
    "location": "Location step: only manage geographic targeting with the location tools.",
    "audience": "Audience step: only manage targeting.",
    "destination": "Destination step: help configure forms, URLs or phone numbers.",
    "budget": "Budget step: review spend and launch settings.",
    "preview": "Preview step: review the ad before publishing.",
    "publish": "Publish step: confirm the campaign is ready to launch.",
}

SUMMARY_PREFIX = "Summary of the earlier conversation:"


def _reference_section(reference: EditReference) -> str:
    lines = [
        f"The user is editing {reference.title or 'an existing variation'}"
        + (f" ({reference.format} format)" if reference.format else "")
        + ".",
        f"Variation index: {reference.variation_index}",
    ]
    if reference.locator:
        lines.append(f"Image URL: {reference.locator}")
    if reference.category is EditCategory.COPY:
        for key in ("primaryText", "headline", "description"):
            value = reference.content.get(key)
            if value:
                lines.append(f"Current {key}: {value!r}")
        lines.append("Call editCopy (or a refine tool) for this variation. Do not generate new ads.")
    else:
        lines.append(
            "Call editVariation for modifications or regenerateVariation for a fresh take. "
            "Do not generate new variations."
        )
    return "\n".join(lines)


def build_system_prompt(
    context: TurnContext,
    decision: PolicyDecision,
    *,
    summary: str | None = None,
) -> str:
    if context.location_setup is not None:
        setup = context.location_setup
        return (
            "LOCATION SETUP MODE.\n"
            f'The user provided exactly one location: "{setup.location}" '
            f"(mode: {setup.mode}).\n"
            "Call addLocations for this single location now. Do not suggest other locations "
            "and do not call any other tool."
        )

    if context.edit_reference is not None:
        return "EDITING MODE.\n" + _reference_section(context.edit_reference)

    sections: list[str] = []
    if summary:
        sections.append(f"{SUMMARY_PREFIX}\n{summary}")

    goal = context.goal_type
    if goal:
        sections.append(f"Campaign goal: {goal.upper()}.\n{GOAL_GUIDANCE.get(goal, '')}".strip())
    else:
        sections.append("No campaign goal has been set yet.")

    step = context.step.current_step
    if step and step in STEP_GUIDANCE:
        sections.append(f"Current step: {step}.\n{STEP_GUIDANCE[step]}")
    if context.step.active_tab == "results":
        sections.append("The user is looking at campaign results; answer questions about them.")

    sections.append(
        "Ask at most one focused question before acting. Once you have enough context, "
        "use the tools. Keep replies short and friendly."
    )
    sections.append(
        "Use one tool category per response. Never combine creative or copy tools with "
        "targeting or campaign tools.\nAvailable tools: " + ", ".join(decision.tool_names)
    )
    return "\n\n".join(sections)


def _tool_message(part: Part | None, call_id: str) -> dict[str, Any]:
    if part is None:
        output: dict[str, Any] = {"status": "awaiting_confirmation"}
    else:
        output = part.output
    return {"role": "tool", "tool_call_id": call_id, "content": json.dumps(output)}


def to_gateway_messages(turns: list[Turn], system_prompt: str) -> list[dict[str, Any]]:
    """Convert turns into chat-completions messages.

    Each assistant tool call is followed by its tool message, wherever the
    result was recorded. Calls still waiting for user confirmation get a
    placeholder so the transcript stays well-formed.
    """
    results: dict[str, Part] = {
        part.tool_call_id: part
        for turn in turns
        for part in turn.parts
        if part.type == PART_TOOL_RESULT
    }
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for turn in turns:
        calls = [part for part in turn.parts if part.type == PART_TOOL_CALL]
        text = turn.text
        if turn.role == "assistant":
            message: dict[str, Any] = {"role": "assistant", "content": text or None}
            if calls:
                message["tool_calls"] = [
                    {
                        "id": call.tool_call_id,
                        "type": "function",
                        "function": {"name": call.tool_name, "arguments": json.dumps(call.input)},
                    }
                    for call in calls
                ]
            if text or calls:
                messages.append(message)
            messages.extend(
                _tool_message(results.get(call.tool_call_id), call.tool_call_id) for call in calls
            )
        elif text:
            messages.append({"role": turn.role, "content": text})
    return messages

import pytest

from adchat.chat.validation import MessageValidator
from adchat.chat.window import WindowLoader
from adchat.db.connection import get_conn
from adchat.db.queries import append_turns, create_conversation
from adchat.events.sink import RecordingEventSink
from adchat.models import PART_TOOL_RESULT, Turn, text_part, tool_call_part, tool_result_part
from adchat.tools.registry import build_default_registry

TORONTO = {"locations": [{"name": "Toronto"}]}


def _store(turns: list[Turn]) -> str:
    with get_conn() as conn:
        conversation = create_conversation(conn, "user_1")
        append_turns(conn, conversation.id, turns)
    return conversation.id


def _confirmation_history(answer_text: str | None) -> list[Turn]:
    answer = [tool_result_part("c1", "addLocations", {"success": True})]
    if answer_text:
        answer.append(text_part(answer_text))
    return [
        Turn(id="u0", role="user", parts=[text_part("Target Toronto")]),
        Turn(
            id="a0",
            role="assistant",
            parts=[text_part("Adding Toronto."), tool_call_part("c1", "addLocations", TORONTO)],
        ),
        Turn(id="u1", role="user", parts=answer),
        Turn(id="a1", role="assistant", parts=[text_part("Toronto is set.")]),
    ]


@pytest.mark.asyncio
async def test_window_cut_drops_result_without_its_call() -> None:
    conversation_id = _store(_confirmation_history("Looks good"))

    window = await WindowLoader().load(conversation_id, limit=2)

    assert [turn.id for turn in window] == ["u1", "a1"]
    assert [part.type for part in window[0].parts] == ["text"]
    sink = RecordingEventSink()
    new_turn = Turn(id="u2", role="user", parts=[text_part("Now the budget")])
    turns, degraded = MessageValidator(build_default_registry()).prepare_context(
        window, new_turn, sink=sink, conversation_id=conversation_id, trace_id="trc_1"
    )
    assert not degraded
    assert [turn.id for turn in turns] == ["u1", "a1", "u2"]
    assert sink.events == []


@pytest.mark.asyncio
async def test_turn_holding_only_an_orphan_result_is_skipped() -> None:
    conversation_id = _store(_confirmation_history(None))

    window = await WindowLoader().load(conversation_id, limit=2)

    assert [turn.id for turn in window] == ["a1"]


@pytest.mark.asyncio
async def test_results_with_calls_in_window_are_kept() -> None:
    conversation_id = _store(_confirmation_history(None))

    window = await WindowLoader().load(conversation_id, limit=10)

    assert [turn.id for turn in window] == ["u0", "a0", "u1", "a1"]
    assert [part.type for part in window[2].parts] == [PART_TOOL_RESULT]

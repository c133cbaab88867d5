import pytest

from adchat.config import get_settings
from adchat.db.connection import get_conn
from adchat.db.queries import append_turns, create_conversation, get_conversation, get_summary
from adchat.errors import GatewayError
from adchat.models import Turn, text_part
from adchat.tasks import conversations, get_task_runner
from adchat.tasks.conversations import (
    DEFAULT_TITLE,
    derive_title,
    evaluate_summary,
    make_title,
    summarize_conversation,
)


def _seed(count: int) -> str:
    with get_conn() as conn:
        conversation = create_conversation(conn, "user_1")
        append_turns(
            conn,
            conversation.id,
            [
                Turn(
                    id=f"m{n}",
                    role="user" if n % 2 else "assistant",
                    parts=[text_part(f"message {n}")],
                )
                for n in range(1, count + 1)
            ],
        )
    return conversation.id


def test_make_title_collapses_and_truncates() -> None:
    assert make_title("  Ads   for\nmy bakery ") == "Ads for my bakery"
    assert make_title("") == DEFAULT_TITLE
    long = make_title("word " * 40)
    assert len(long) <= 60
    assert long.endswith("...")


def test_derive_title_only_once() -> None:
    conversation_id = _seed(2)
    assert derive_title(conversation_id) == "message 1"
    assert derive_title(conversation_id) is None
    with get_conn() as conn:
        assert get_conversation(conn, conversation_id).title == "message 1"


@pytest.mark.asyncio
async def test_evaluate_summary_respects_threshold(
    monkeypatch: pytest.MonkeyPatch, scripted_gateway
) -> None:
    monkeypatch.setenv("SUMMARY_THRESHOLD_MESSAGES", "4")
    monkeypatch.setattr(
        conversations, "build_gateway", lambda settings: scripted_gateway(reply="summary")
    )
    get_settings.cache_clear()
    assert await evaluate_summary(_seed(3)) is False
    conversation_id = _seed(4)
    assert await evaluate_summary(conversation_id) is True
    await get_task_runner().drain(timeout_s=5)
    with get_conn() as conn:
        assert get_summary(conn, conversation_id)["summary"] == "summary"


@pytest.mark.asyncio
async def test_summarize_uses_gateway(monkeypatch: pytest.MonkeyPatch, scripted_gateway) -> None:
    gateway = scripted_gateway(reply="They want bakery ads.")
    monkeypatch.setattr(conversations, "build_gateway", lambda settings: gateway)
    conversation_id = _seed(5)

    summary = await summarize_conversation(conversation_id)

    assert summary == "They want bakery ads."
    assert "user: message 1" in gateway.calls[0]["messages"][1]["content"]
    with get_conn() as conn:
        stored = get_summary(conn, conversation_id)
    assert stored is not None
    assert stored["last_seq"] == 5
    assert stored["message_count"] == 5


@pytest.mark.asyncio
async def test_summarize_falls_back_to_extract(monkeypatch: pytest.MonkeyPatch) -> None:
    class DownGateway:
        async def complete(self, model, messages):
            raise GatewayError("down")

    monkeypatch.setattr(conversations, "build_gateway", lambda settings: DownGateway())
    conversation_id = _seed(10)

    summary = await summarize_conversation(conversation_id)

    lines = summary.splitlines()
    assert len(lines) == 8
    assert lines[-1] == "assistant: message 10"

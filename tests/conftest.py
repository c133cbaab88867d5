import os
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from adchat.config import get_settings
from adchat.db.migrations.runner import run_migrations
from adchat.gateway.base import GatewayEvent, RoundFinished, TextDelta, ToolCallRequest
from adchat.tasks import reset_task_runner
from adchat.tools.contracts import ToolContract
from adchat.tools.executors import ToolCallContext


class ScriptedGateway:
    """Replays one scripted list of events per round, then plain stops."""

    def __init__(self, rounds: list[list[GatewayEvent]] | None = None, reply: str = "") -> None:
        self.rounds = list(rounds or [])
        self.reply = reply
        self.calls: list[dict[str, Any]] = []

    async def stream_round(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[GatewayEvent]:
        self.calls.append(
            {
                "model": model,
                "messages": list(messages),
                "tools": [tool["name"] for tool in tools or []],
            }
        )
        events = self.rounds.pop(0) if self.rounds else [TextDelta("Done.")]
        for event in events:
            yield event
        yield RoundFinished("stop")

    async def complete(self, model: str, messages: list[dict[str, Any]]) -> str:
        self.calls.append({"model": model, "messages": list(messages), "tools": []})
        return self.reply

    async def health_check(self) -> bool:
        return True


class RecordingExecutor:
    """Echoes arguments back as the tool result and records every execution."""

    def __init__(self, results: dict[str, dict[str, Any]] | None = None) -> None:
        self.results = results or {}
        self.executed: list[tuple[str, dict[str, Any], ToolCallContext]] = []

    def prepare(self, contract: ToolContract, arguments: dict[str, Any]) -> dict[str, Any]:
        return dict(arguments)

    async def execute(
        self,
        contract: ToolContract,
        arguments: dict[str, Any],
        context: ToolCallContext,
    ) -> dict[str, Any]:
        self.executed.append((contract.name, dict(arguments), context))
        return {"success": True, **arguments, **self.results.get(contract.name, {})}


def tool_call(name: str, arguments: dict[str, Any], call_id: str | None = None) -> ToolCallRequest:
    return ToolCallRequest(id=call_id or f"call_{name}", name=name, arguments=arguments)


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path):
    db = tmp_path / "test.db"
    os.environ["APP_DB"] = str(db)
    os.environ["APP_ENV"] = "dev"
    os.environ["EVENT_STORE_ENABLED"] = "0"
    os.environ["CAMPAIGN_NAMER"] = "wordlist"
    os.environ["CHAT_RATE_LIMIT"] = "1000/minute"
    get_settings.cache_clear()
    run_migrations()
    reset_task_runner()
    yield
    reset_task_runner()
    get_settings.cache_clear()


@pytest.fixture
def scripted_gateway():
    return ScriptedGateway


@pytest.fixture
def recording_executor():
    return RecordingExecutor


@pytest.fixture
def make_tool_call():
    return tool_call

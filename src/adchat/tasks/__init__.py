"""Task registration and singleton accessor."""

from __future__ import annotations

from adchat.config import get_settings
from adchat.tasks.runner import TaskRunner

_task_runner: TaskRunner | None = None


def _register_tasks(runner: TaskRunner) -> None:
    from adchat.tasks import conversations

    runner.register("adchat.tasks.conversations.derive_title", conversations.derive_title)
    runner.register(
        "adchat.tasks.conversations.evaluate_summary", conversations.evaluate_summary
    )
    runner.register(
        "adchat.tasks.conversations.summarize_conversation",
        conversations.summarize_conversation,
    )
    runner.register("adchat.tasks.conversations.persist_turns", conversations.persist_turns)


def get_task_runner() -> TaskRunner:
    global _task_runner
    if _task_runner is None or _task_runner.closed:
        settings = get_settings()
        _task_runner = TaskRunner(max_concurrent=int(settings.task_runner_max_concurrent))
        _register_tasks(_task_runner)
    return _task_runner


def reset_task_runner() -> None:
    global _task_runner
    _task_runner = None

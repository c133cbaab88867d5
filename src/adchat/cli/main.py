"""Click CLI group: migrate, serve, chat, and name-campaign commands."""

from __future__ import annotations

import asyncio
import json
import os
import socket
from typing import Any

import click

from adchat.config import get_settings
from adchat.errors import AdChatError


def default_cli_user() -> str:
    user = os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"
    host = socket.gethostname() or "local"
    return f"cli:{user}@{host}"


@click.group()
def cli() -> None:
    """Campaign chat backend CLI."""


@cli.command()
def migrate() -> None:
    """Apply pending database migrations."""
    from adchat.db.migrations.runner import run_migrations

    applied = run_migrations()
    if not applied:
        click.echo("database is up to date")
    for name in applied:
        click.echo(f"applied {name}")


@cli.command()
@click.option("--host", type=str, default=None, help="Bind host (default: BIND_HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: BIND_PORT).")
@click.option("--reload", is_flag=True, help="Reload on code changes.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "adchat.main:app",
        host=host or settings.bind_host,
        port=port or int(settings.bind_port),
        reload=reload,
        log_config=None,
    )


def _build_message(
    text: str, campaign_id: str | None, step: str | None, metadata_json: str | None
) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    if metadata_json:
        try:
            decoded = json.loads(metadata_json)
        except json.JSONDecodeError as exc:
            raise click.BadParameter(f"invalid JSON: {exc}", param_hint="--metadata") from exc
        if not isinstance(decoded, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--metadata")
        metadata.update(decoded)
    if campaign_id:
        metadata["campaignId"] = campaign_id
    if step:
        metadata["currentStep"] = step
    return {"role": "user", "parts": [{"type": "text", "text": text}], "metadata": metadata}


async def _run_chat(
    owner_id: str,
    message: dict[str, Any],
    conversation_id: str | None,
    model: str | None,
    json_output: bool,
) -> str:
    from adchat.chat.service import build_chat_service
    from adchat.tasks import get_task_runner

    service = build_chat_service()
    prepared = await service.prepare(
        owner_id=owner_id, message=message, conversation_id=conversation_id, model=model
    )
    finish = ""
    async for part in service.stream(prepared):
        kind = part["type"]
        if json_output:
            click.echo(json.dumps(part))
        elif kind == "text-delta":
            click.echo(part["delta"], nl=False)
        elif kind == "tool-call":
            suffix = " (needs confirmation)" if part["requiresConfirmation"] else ""
            click.echo(f"\n[tool] {part['toolName']} {json.dumps(part['input'])}{suffix}")
        elif kind == "tool-result":
            label = "error" if part["isError"] else "result"
            click.echo(f"[{label}] {part['toolName']} {json.dumps(part['output'])}")
        elif kind == "error":
            click.echo(f"\n[error] {part['errorText']}", err=True)
        if kind == "finish":
            finish = str(part["finishReason"])
    await get_task_runner().drain(timeout_s=30.0)
    return finish


@cli.command()
@click.argument("message")
@click.option("--id", "conversation_id", type=str, default=None, help="Conversation or draft id.")
@click.option("--campaign-id", type=str, default=None, help="Bind the turn to this campaign.")
@click.option("--step", type=str, default=None, help="Current builder step, e.g. ads or copy.")
@click.option("--metadata", "metadata_json", type=str, default=None, help="Extra metadata JSON.")
@click.option("--model", type=str, default=None, help="Override DEFAULT_MODEL.")
@click.option(
    "--user-id",
    type=str,
    default=default_cli_user,
    show_default="cli:<local-user>@<host>",
    help="Owner id for the conversation.",
)
@click.option("--json", "json_output", is_flag=True, help="Print raw stream parts as NDJSON.")
def chat(
    message: str,
    conversation_id: str | None,
    campaign_id: str | None,
    step: str | None,
    metadata_json: str | None,
    model: str | None,
    user_id: str,
    json_output: bool,
) -> None:
    """Send one message through the chat pipeline and print the stream."""
    from adchat.db.migrations.runner import run_migrations

    run_migrations()
    if conversation_id is None and campaign_id:
        conversation_id = campaign_id
    payload = _build_message(message, campaign_id, step, metadata_json)
    try:
        finish = asyncio.run(_run_chat(user_id, payload, conversation_id, model, json_output))
    except AdChatError as exc:
        raise click.ClickException(str(exc)) from exc
    if not json_output:
        click.echo(f"\n-- finished: {finish}")


@cli.command("name-campaign")
@click.argument("prompt")
@click.option("--goal", type=click.Choice(["leads", "calls", "website-visits"]), default=None)
@click.option("--user-id", type=str, default=default_cli_user, show_default="cli:<local-user>@<host>")
def name_campaign(prompt: str, goal: str | None, user_id: str) -> None:
    """Create a campaign with a freshly allocated unique name."""
    from adchat.db.migrations.runner import run_migrations
    from adchat.routes.api.campaigns import get_allocator

    run_migrations()
    try:
        allocation = asyncio.run(get_allocator().allocate(user_id, prompt, goal=goal))
    except AdChatError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"campaign: {allocation.campaign.name} ({allocation.campaign.id})")
    click.echo(f"conversation: {allocation.conversation.id}")
    if allocation.avoided:
        click.echo(f"avoided: {', '.join(allocation.avoided)}")

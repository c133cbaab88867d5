"""Query helpers used by the chat pipeline, routes and tasks."""

import json
import sqlite3
from datetime import UTC, datetime
from typing import Any

from adchat.db.connection import transaction
from adchat.ids import new_id
from adchat.models import Campaign, Conversation, Part, Turn

# Upper bound for the denormalized text column; parts_json keeps the full turn.
MAX_CONTENT_BYTES = 50 * 1024


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _loads(raw: object) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        decoded = json.loads(str(raw))
    except json.JSONDecodeError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


def _conversation_from_row(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        campaign_id=str(row["campaign_id"]) if row["campaign_id"] else None,
        title=str(row["title"]) if row["title"] else None,
        metadata=_loads(row["metadata_json"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _turn_from_row(row: sqlite3.Row) -> Turn:
    try:
        raw_parts = json.loads(str(row["parts_json"]))
    except json.JSONDecodeError:
        raw_parts = []
    parts = [Part.from_dict(item) for item in raw_parts if isinstance(item, dict)]
    return Turn(
        id=str(row["id"]),
        role=str(row["role"]),
        parts=parts,
        metadata=_loads(row["metadata_json"]),
        conversation_id=str(row["conversation_id"]),
        seq=int(row["seq"]),
        created_at=str(row["created_at"]),
    )


# -- conversations ---------------------------------------------------------


def get_conversation(conn: sqlite3.Connection, conversation_id: str) -> Conversation | None:
    row = conn.execute("SELECT * FROM conversations WHERE id=?", (conversation_id,)).fetchone()
    return _conversation_from_row(row) if row is not None else None


def get_conversation_by_campaign(
    conn: sqlite3.Connection, campaign_id: str
) -> Conversation | None:
    row = conn.execute(
        "SELECT * FROM conversations WHERE campaign_id=?", (campaign_id,)
    ).fetchone()
    return _conversation_from_row(row) if row is not None else None


def create_conversation(
    conn: sqlite3.Connection,
    owner_id: str,
    *,
    campaign_id: str | None = None,
    title: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Conversation:
    conversation_id = new_id("cnv")
    ts = now_iso()
    with transaction(conn):
        conn.execute(
            "INSERT INTO conversations(id, owner_id, campaign_id, title, metadata_json, "
            "created_at, updated_at) VALUES(?,?,?,?,?,?,?)",
            (conversation_id, owner_id, campaign_id, title, json.dumps(metadata or {}), ts, ts),
        )
        conn.execute(
            "INSERT INTO conversation_counters(conversation_id, next_seq) VALUES(?, 0)",
            (conversation_id,),
        )
    created = get_conversation(conn, conversation_id)
    assert created is not None
    return created


def get_or_create_campaign_conversation(
    conn: sqlite3.Connection,
    owner_id: str,
    campaign_id: str,
    *,
    title: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> tuple[Conversation, bool]:
    """Return the single conversation bound to ``campaign_id``.

    The UNIQUE constraint on ``conversations.campaign_id`` arbitrates
    concurrent callers: losers of the insert race read the winner's row.
    """
    with transaction(conn):
        return bind_campaign_conversation(
            conn, owner_id, campaign_id, title=title, metadata=metadata
        )


def bind_campaign_conversation(
    conn: sqlite3.Connection,
    owner_id: str,
    campaign_id: str,
    *,
    title: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> tuple[Conversation, bool]:
    """Get-or-create body; the caller owns the transaction."""
    conversation_id = new_id("cnv")
    ts = now_iso()
    cursor = conn.execute(
        "INSERT INTO conversations(id, owner_id, campaign_id, title, metadata_json, "
        "created_at, updated_at) VALUES(?,?,?,?,?,?,?) "
        "ON CONFLICT(campaign_id) DO NOTHING",
        (conversation_id, owner_id, campaign_id, title, json.dumps(metadata or {}), ts, ts),
    )
    created = cursor.rowcount == 1
    if created:
        conn.execute(
            "INSERT INTO conversation_counters(conversation_id, next_seq) VALUES(?, 0)",
            (conversation_id,),
        )
    conversation = get_conversation_by_campaign(conn, campaign_id)
    assert conversation is not None
    return conversation, created


def list_conversations(
    conn: sqlite3.Connection,
    owner_id: str,
    *,
    campaign_id: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Conversation]:
    if campaign_id:
        rows = conn.execute(
            "SELECT * FROM conversations WHERE owner_id=? AND campaign_id=? "
            "ORDER BY updated_at DESC LIMIT ? OFFSET ?",
            (owner_id, campaign_id, limit, offset),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM conversations WHERE owner_id=? "
            "ORDER BY updated_at DESC LIMIT ? OFFSET ?",
            (owner_id, limit, offset),
        ).fetchall()
    return [_conversation_from_row(row) for row in rows]


def update_conversation(
    conn: sqlite3.Connection,
    conversation_id: str,
    *,
    title: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Conversation | None:
    """Update title and/or merge metadata. The campaign binding is never touched."""
    current = get_conversation(conn, conversation_id)
    if current is None:
        return None
    merged = dict(current.metadata)
    if metadata:
        merged.update(metadata)
    conn.execute(
        "UPDATE conversations SET title=?, metadata_json=?, updated_at=? WHERE id=?",
        (
            title if title is not None else current.title,
            json.dumps(merged),
            now_iso(),
            conversation_id,
        ),
    )
    return get_conversation(conn, conversation_id)


def set_title_if_missing(conn: sqlite3.Connection, conversation_id: str, title: str) -> bool:
    cursor = conn.execute(
        "UPDATE conversations SET title=?, updated_at=? WHERE id=? AND title IS NULL",
        (title, now_iso(), conversation_id),
    )
    return cursor.rowcount == 1


def delete_conversation(conn: sqlite3.Connection, conversation_id: str) -> bool:
    cursor = conn.execute("DELETE FROM conversations WHERE id=?", (conversation_id,))
    return cursor.rowcount == 1


# -- messages --------------------------------------------------------------


def render_content(turn: Turn) -> str:
    """Plain-text projection of a turn used for listings and summaries."""
    content = turn.text
    if not content:
        names = [part.tool_name for part in turn.parts if part.type == "tool-call"]
        if names:
            content = "Tool execution: " + ", ".join(f"[Tool: {name}]" for name in names)
    encoded = content.encode("utf-8")
    if len(encoded) > MAX_CONTENT_BYTES:
        content = encoded[:MAX_CONTENT_BYTES].decode("utf-8", errors="ignore")
    return content


def existing_message_ids(conn: sqlite3.Connection, message_ids: list[str]) -> set[str]:
    if not message_ids:
        return set()
    placeholders = ",".join("?" for _ in message_ids)
    rows = conn.execute(
        f"SELECT id FROM messages WHERE id IN ({placeholders})",  # noqa: S608
        tuple(message_ids),
    ).fetchall()
    return {str(row["id"]) for row in rows}


def append_turns(conn: sqlite3.Connection, conversation_id: str, turns: list[Turn]) -> list[Turn]:
    """Append turns, assigning sequence numbers from the conversation counter.

    Turns whose id is already stored are skipped. Returns the persisted turns
    with ``seq`` and ``created_at`` filled in.
    """
    persisted: list[Turn] = []
    with transaction(conn):
        known = existing_message_ids(conn, [turn.id for turn in turns])
        for turn in turns:
            if turn.id in known:
                continue
            row = conn.execute(
                "UPDATE conversation_counters SET next_seq = next_seq + 1 "
                "WHERE conversation_id=? RETURNING next_seq",
                (conversation_id,),
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO conversation_counters(conversation_id, next_seq) VALUES(?, 1)",
                    (conversation_id,),
                )
                seq = 1
            else:
                seq = int(row["next_seq"])
            ts = now_iso()
            conn.execute(
                "INSERT INTO messages(id, conversation_id, seq, role, content, parts_json, "
                "metadata_json, created_at) VALUES(?,?,?,?,?,?,?,?)",
                (
                    turn.id,
                    conversation_id,
                    seq,
                    turn.role,
                    render_content(turn),
                    json.dumps([part.to_dict() for part in turn.parts]),
                    json.dumps(turn.metadata),
                    ts,
                ),
            )
            known.add(turn.id)
            persisted.append(
                Turn(
                    id=turn.id,
                    role=turn.role,
                    parts=list(turn.parts),
                    metadata=dict(turn.metadata),
                    conversation_id=conversation_id,
                    seq=seq,
                    created_at=ts,
                )
            )
        if persisted:
            conn.execute(
                "UPDATE conversations SET updated_at=? WHERE id=?",
                (now_iso(), conversation_id),
            )
    return persisted


def load_window(
    conn: sqlite3.Connection,
    conversation_id: str,
    *,
    limit: int,
    before_seq: int | None = None,
) -> list[Turn]:
    """Most recent ``limit`` turns (optionally older than ``before_seq``), ascending."""
    if before_seq is not None:
        rows = conn.execute(
            "SELECT * FROM messages WHERE conversation_id=? AND seq < ? "
            "ORDER BY seq DESC LIMIT ?",
            (conversation_id, before_seq, limit),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM messages WHERE conversation_id=? ORDER BY seq DESC LIMIT ?",
            (conversation_id, limit),
        ).fetchall()
    return [_turn_from_row(row) for row in reversed(rows)]


def count_messages(conn: sqlite3.Connection, conversation_id: str, after_seq: int = 0) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS cnt FROM messages WHERE conversation_id=? AND seq > ?",
        (conversation_id, after_seq),
    ).fetchone()
    return int(row["cnt"]) if row is not None else 0


def first_user_text(conn: sqlite3.Connection, conversation_id: str) -> str:
    row = conn.execute(
        "SELECT content FROM messages WHERE conversation_id=? AND role='user' "
        "AND content != '' ORDER BY seq ASC LIMIT 1",
        (conversation_id,),
    ).fetchone()
    return str(row["content"]) if row is not None else ""


# -- summaries -------------------------------------------------------------


def get_summary(conn: sqlite3.Connection, conversation_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT summary, message_count, last_seq, updated_at FROM conversation_summaries "
        "WHERE conversation_id=?",
        (conversation_id,),
    ).fetchone()
    if row is None:
        return None
    return {
        "summary": str(row["summary"]),
        "message_count": int(row["message_count"]),
        "last_seq": int(row["last_seq"]),
        "updated_at": str(row["updated_at"]),
    }


def upsert_summary(
    conn: sqlite3.Connection,
    conversation_id: str,
    summary: str,
    *,
    message_count: int,
    last_seq: int,
) -> None:
    conn.execute(
        "INSERT INTO conversation_summaries(conversation_id, summary, message_count, last_seq, "
        "updated_at) VALUES(?,?,?,?,?) "
        "ON CONFLICT(conversation_id) DO UPDATE SET summary=excluded.summary, "
        "message_count=excluded.message_count, last_seq=excluded.last_seq, "
        "updated_at=excluded.updated_at",
        (conversation_id, summary, message_count, last_seq, now_iso()),
    )


# -- campaigns -------------------------------------------------------------


def _campaign_from_row(row: sqlite3.Row) -> Campaign:
    return Campaign(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        name=str(row["name"]),
        status=str(row["status"]),
        initial_goal=str(row["initial_goal"]) if row["initial_goal"] else None,
        metadata=_loads(row["metadata_json"]),
        created_at=str(row["created_at"]),
    )


def get_campaign(conn: sqlite3.Connection, campaign_id: str) -> Campaign | None:
    row = conn.execute("SELECT * FROM campaigns WHERE id=?", (campaign_id,)).fetchone()
    return _campaign_from_row(row) if row is not None else None


def insert_campaign(
    conn: sqlite3.Connection,
    owner_id: str,
    name: str,
    *,
    initial_goal: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Campaign:
    """Insert a campaign; raises ``sqlite3.IntegrityError`` when the name is taken."""
    campaign_id = new_id("camp")
    ts = now_iso()
    conn.execute(
        "INSERT INTO campaigns(id, owner_id, name, status, initial_goal, metadata_json, "
        "created_at, updated_at) VALUES(?,?,?,?,?,?,?,?)",
        (campaign_id, owner_id, name, "draft", initial_goal, json.dumps(metadata or {}), ts, ts),
    )
    created = get_campaign(conn, campaign_id)
    assert created is not None
    return created


def insert_ad(conn: sqlite3.Connection, campaign_id: str, name: str) -> str:
    ad_id = new_id("ad")
    conn.execute(
        "INSERT INTO ads(id, campaign_id, name, status, created_at) VALUES(?,?,?,?,?)",
        (ad_id, campaign_id, name, "draft", now_iso()),
    )
    return ad_id


# -- events ----------------------------------------------------------------


def insert_event(
    conn: sqlite3.Connection,
    event_type: str,
    payload: dict[str, Any],
    *,
    conversation_id: str | None = None,
    trace_id: str | None = None,
) -> str:
    event_id = new_id("evt")
    conn.execute(
        "INSERT INTO events(id, event_type, conversation_id, trace_id, payload_json, created_at) "
        "VALUES(?,?,?,?,?,?)",
        (event_id, event_type, conversation_id, trace_id, json.dumps(payload), now_iso()),
    )
    return event_id

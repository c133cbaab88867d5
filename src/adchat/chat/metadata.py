"""Parsing of per-turn message metadata into typed request context."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

COPY_FIELDS = frozenset({"primaryText", "headline", "description"})
GOAL_TYPES = ("leads", "calls", "website-visits")

_INT_TEXT = re.compile(r"^-?\d+$")


class EditCategory(str, Enum):
    IMAGE = "image"
    COPY = "copy"


@dataclass(slots=True)
class StepContext:
    current_step: str | None = None
    active_tab: str = "setup"


@dataclass(slots=True)
class EditReference:
    variation_index: int
    category: EditCategory
    locator: str | None = None
    session_id: str | None = None
    title: str | None = None
    format: str | None = None
    content: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class LocationSetup:
    location: str
    mode: str = "include"


@dataclass(slots=True)
class TurnContext:
    step: StepContext
    edit_mode: bool = False
    edit_reference: EditReference | None = None
    # Raw index and reason when an editingReference was supplied but could not be pinned.
    rejected_reference: tuple[Any, str] | None = None
    location_setup: LocationSetup | None = None
    location_setup_requested: bool = False
    goal_type: str | None = None
    campaign_id: str | None = None


def coerce_index(value: Any) -> tuple[int | None, str]:
    """Parse an index value. Returns ``(index, "")`` or ``(None, reason)``."""
    if value is None:
        return None, "missing"
    if isinstance(value, bool):
        return None, "not an integer"
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        if not value.is_integer():
            return None, "not an integer"
        parsed = int(value)
    elif isinstance(value, str) and _INT_TEXT.match(value.strip()):
        parsed = int(value.strip())
    else:
        return None, "not an integer"
    if parsed < 0:
        return None, "negative"
    return parsed, ""


def _edit_category(reference: dict[str, Any]) -> EditCategory:
    nested = reference.get("metadata")
    fields = reference.get("fields")
    if fields is None and isinstance(nested, dict):
        fields = nested.get("fields")
    if isinstance(fields, list):
        if any(name in COPY_FIELDS for name in fields):
            return EditCategory.COPY
        return EditCategory.IMAGE
    return EditCategory.COPY if reference.get("content") else EditCategory.IMAGE


def parse_edit_reference(raw: Any) -> tuple[EditReference | None, tuple[Any, str] | None]:
    """Build an EditReference from ``metadata.editingReference``.

    ``variationIndex`` is zero-based. The legacy ``variationNumber`` is
    one-based and normalized with ``max(0, n - 1)``.
    """
    if not isinstance(raw, dict):
        return None, None
    if "variationIndex" in raw and raw["variationIndex"] is not None:
        raw_index = raw["variationIndex"]
        index, reason = coerce_index(raw_index)
    else:
        raw_index = raw.get("variationNumber")
        number, reason = coerce_index(raw_index)
        index = max(0, number - 1) if number is not None else None
    if index is None:
        return None, (raw_index, reason)

    session = raw.get("editSession")
    session_id = raw.get("sessionId")
    if isinstance(session, dict) and session.get("sessionId"):
        session_id = session.get("sessionId")
    content = raw.get("content")
    return (
        EditReference(
            variation_index=index,
            category=_edit_category(raw),
            locator=str(raw["imageUrl"]) if raw.get("imageUrl") else None,
            session_id=str(session_id) if session_id else None,
            title=str(raw["variationTitle"]) if raw.get("variationTitle") else None,
            format=str(raw["format"]) if raw.get("format") else None,
            content=dict(content) if isinstance(content, dict) else {},
        ),
        None,
    )


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_turn_context(
    metadata: dict[str, Any] | None,
    conversation_metadata: dict[str, Any] | None = None,
) -> TurnContext:
    meta = metadata if isinstance(metadata, dict) else {}
    step_name = _optional_str(meta.get("currentStep"))
    step = StepContext(
        current_step=step_name.lower() if step_name else None,
        active_tab="results" if meta.get("activeTab") == "results" else "setup",
    )

    edit_mode = bool(meta.get("editMode"))
    reference: EditReference | None = None
    rejected: tuple[Any, str] | None = None
    # An explicit editMode=false switches the reference off.
    if meta.get("editMode") is not False and meta.get("editingReference") is not None:
        reference, rejected = parse_edit_reference(meta.get("editingReference"))
        edit_mode = edit_mode or reference is not None

    setup_requested = bool(meta.get("locationSetupMode"))
    location_input = _optional_str(meta.get("locationInput"))
    location_setup: LocationSetup | None = None
    if setup_requested and location_input:
        mode = meta.get("locationMode")
        location_setup = LocationSetup(
            location=location_input,
            mode=mode if mode in ("include", "exclude") else "include",
        )
    elif setup_requested:
        logger.warning("Location setup mode without locationInput; running unrestricted")

    goal: str | None = None
    conversation_goal = (conversation_metadata or {}).get("current_goal")
    if isinstance(conversation_goal, str) and conversation_goal in GOAL_TYPES:
        goal = conversation_goal
    elif meta.get("goalType") in GOAL_TYPES:
        goal = str(meta["goalType"])

    return TurnContext(
        step=step,
        edit_mode=edit_mode,
        edit_reference=reference,
        rejected_reference=rejected,
        location_setup=location_setup,
        location_setup_requested=setup_requested,
        goal_type=goal,
        campaign_id=_optional_str(meta.get("campaignId")),
    )

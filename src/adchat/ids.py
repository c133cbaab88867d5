"""Identifier helpers."""

import re
from uuid import UUID, uuid4

_PREFIXED_ID = re.compile(r"^[a-z]{2,8}_[0-9a-z]+$", re.IGNORECASE)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except (TypeError, ValueError):
        return False
    return True


def is_durable_id(value: str | None) -> bool:
    """True for ids issued by storage: UUIDs or ``<prefix>_<token>``.

    Client-side draft ids such as ``conv_1762821485606_h0uawxrjf`` carry a
    second underscore and are not durable.
    """
    if not value:
        return False
    return is_uuid(value) or bool(_PREFIXED_ID.match(value))

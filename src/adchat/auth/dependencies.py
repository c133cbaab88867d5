"""FastAPI dependencies for caller identity.

Authentication happens upstream; the proxy forwards the verified user id
in ``X-User-Id``.
"""

from dataclasses import dataclass

from fastapi import Header, HTTPException, status


@dataclass(frozen=True, slots=True)
class UserContext:
    user_id: str


def require_user(x_user_id: str | None = Header(default=None)) -> UserContext:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing user identity",
        )
    return UserContext(user_id=user_id)

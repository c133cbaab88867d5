"""Health and readiness routes."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from adchat.config import get_settings
from adchat.db.connection import get_conn
from adchat.gateway.factory import build_gateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, bool]:
    return {"ok": True}


@router.get("/readyz")
async def readyz() -> JSONResponse:
    db_ok = True
    try:
        with get_conn() as conn:
            conn.execute("SELECT 1 FROM conversations LIMIT 1")
    except Exception as exc:
        logger.warning("Readiness database probe failed: %s", exc)
        db_ok = False
    gateway_ok = await build_gateway(get_settings()).health_check()
    ok = db_ok and gateway_ok
    return JSONResponse(
        status_code=200 if ok else 503,
        content={"ok": ok, "db": db_ok, "gateway": gateway_ok},
    )

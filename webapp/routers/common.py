"""Response helpers shared by the API routers."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from webapp.auth.permissions import Decision
from webapp.auth.user_store import UserRecord


def current_user(request: Request) -> UserRecord:
    """Authenticated caller (set by the auth middleware)."""
    return request.state.user


def error(message: str, status_code: int = 400, code: Optional[str] = None) -> JSONResponse:
    payload: Dict[str, Any] = {"status": "error", "message": message}
    if code:
        payload["code"] = code
    return JSONResponse(payload, status_code)


def denied(decision: Decision) -> JSONResponse:
    return error(decision.message, decision.status_code, decision.reason_code)


def not_found(what: str) -> JSONResponse:
    return error(f"{what} not found", 404, "not_found")


async def read_json(request: Request) -> Optional[Dict[str, Any]]:
    """Request body as a dict, or None when it is not a JSON object."""
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None

"""API router for invitation verify/accept.

Prefix: /api/invitations
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from webapp.auth.errors import WorkflowError

from .common import current_user, error, read_json

log = logging.getLogger("teamhub.invitations")

router = APIRouter(prefix="/api/invitations", tags=["invitations"])

_WORKFLOW = None  # InvitationWorkflow


def init(*, workflow) -> None:
    global _WORKFLOW
    _WORKFLOW = workflow


@router.get("/verify")
def verify(token: str = ""):
    """Public: tells the client whether to show login or registration."""
    try:
        result = _WORKFLOW.verify_invitation(token)
    except WorkflowError as e:
        return error(e.message, e.status_code, e.code)
    inv = result["invitation"]
    return JSONResponse({
        "status": "ok",
        "invitation": {
            "email": inv.email,
            "type": inv.type,
            "role": inv.role,
            "workspace_id": inv.workspace_id,
            "project_id": inv.project_id,
            "expires_at": inv.expires_at,
        },
        "user_exists": result["user_exists"],
    })


@router.post("/accept")
async def accept(request: Request):
    user = current_user(request)
    body = await read_json(request)
    token = ((body or {}).get("token") or "").strip()
    if not token:
        return error("Token is required", code="validation_failed")

    # WorkflowError subclasses are rendered by the app-level handler
    result = _WORKFLOW.accept_invitation(token, caller_id=user.user_id)
    data = {"status": "ok", "message": "Invitation accepted successfully", "type": result.invitation.type}
    if result.project is not None:
        data["project"] = result.project.to_dict()
        data["workspace_joined"] = result.workspace_joined
        data["workspace_join"] = result.workspace_join
    if result.workspace is not None:
        data["workspace"] = result.workspace.to_dict()
    return JSONResponse(data)

"""API router for workspaces and their members.

Prefix: /api/workspaces
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from webapp.auth import permissions

from .common import current_user, denied, error, not_found, read_json

log = logging.getLogger("teamhub.workspaces")

router = APIRouter(prefix="/api/workspaces", tags=["workspaces"])

# Injected from server.py
_STORE = None       # WorkspaceStore
_INVITATIONS = None  # InvitationStore
_WORKFLOW = None    # InvitationWorkflow


def init(*, workspace_store, invitation_store, workflow) -> None:
    global _STORE, _INVITATIONS, _WORKFLOW
    _STORE = workspace_store
    _INVITATIONS = invitation_store
    _WORKFLOW = workflow


def _with_my_role(ws, user_id: str) -> dict:
    d = ws.to_dict()
    if ws.owner_id == user_id:
        d["my_role"] = "owner"
    else:
        d["my_role"] = next((m.role for m in ws.members if m.user_id == user_id), None)
    return d


# =====================================================================
# WORKSPACES
# =====================================================================

@router.get("")
def list_workspaces(request: Request):
    user = current_user(request)
    workspaces = _STORE.list_for_user(user.user_id)
    return JSONResponse({"status": "ok", "workspaces": [_with_my_role(w, user.user_id) for w in workspaces]})


@router.post("")
async def create_workspace(request: Request):
    body = await read_json(request)
    if body is None:
        return error("Invalid request")
    name = (body.get("name") or "").strip()
    if not 2 <= len(name) <= 100:
        return error("Workspace name must be between 2 and 100 characters", code="validation_failed")
    user = current_user(request)
    ws = _STORE.create_workspace(
        owner_id=user.user_id,
        name=name,
        description=(body.get("description") or "").strip(),
    )
    return JSONResponse({"status": "ok", "workspace": _with_my_role(ws, user.user_id)}, 201)


@router.get("/{workspace_id}")
def get_workspace(request: Request, workspace_id: str):
    user = current_user(request)
    ws = _STORE.get_workspace(workspace_id)
    if ws is None:
        return not_found("Workspace")
    decision = permissions.can_access_workspace(ws, user.user_id)
    if not decision:
        return denied(decision)
    return JSONResponse({"status": "ok", "workspace": _with_my_role(ws, user.user_id)})


@router.patch("/{workspace_id}")
async def update_workspace(request: Request, workspace_id: str):
    user = current_user(request)
    ws = _STORE.get_workspace(workspace_id)
    if ws is None:
        return not_found("Workspace")
    decision = permissions.can_mutate_workspace(ws, user.user_id)
    if not decision:
        return denied(decision)
    body = await read_json(request)
    if body is None:
        return error("Invalid request")
    if "name" in body and not 2 <= len((body.get("name") or "").strip()) <= 100:
        return error("Workspace name must be between 2 and 100 characters", code="validation_failed")
    ws = _STORE.update_workspace(workspace_id, body)
    return JSONResponse({"status": "ok", "workspace": _with_my_role(ws, user.user_id)})


@router.delete("/{workspace_id}")
def delete_workspace(request: Request, workspace_id: str):
    user = current_user(request)
    ws = _STORE.get_workspace(workspace_id)
    if ws is None:
        return not_found("Workspace")
    decision = permissions.can_delete_workspace(ws, user.user_id)
    if not decision:
        return denied(decision)
    _STORE.delete_workspace(workspace_id)
    return JSONResponse({"status": "ok"})


# =====================================================================
# MEMBERS
# =====================================================================

@router.post("/{workspace_id}/members")
async def add_member(request: Request, workspace_id: str):
    """Add a member by email; unknown emails get a persisted invitation."""
    user = current_user(request)
    ws = _STORE.get_workspace(workspace_id)
    if ws is None:
        return not_found("Workspace")
    decision = permissions.can_mutate_workspace(ws, user.user_id)
    if not decision:
        return denied(decision)
    body = await read_json(request)
    if body is None:
        return error("Invalid request")

    email = body.get("email") or ""
    role = body.get("role") or "member"
    try:
        result = _WORKFLOW.add_workspace_member_by_email(ws, user, email, role)
    except ValueError as e:
        return error(str(e), code="validation_failed")

    if not result.user_exists:
        return JSONResponse({
            "status": "ok",
            "message": "User does not exist. Workspace invitation email sent.",
            "user_exists": False,
            "invitation": result.invitation.summary(),
        }, 201)
    ws = _STORE.get_workspace(workspace_id)
    return JSONResponse({
        "status": "ok",
        "message": "Member added successfully",
        "user_exists": True,
        "workspace": _with_my_role(ws, user.user_id),
    })


@router.delete("/{workspace_id}/members/{member_user_id}")
def remove_member(request: Request, workspace_id: str, member_user_id: str):
    user = current_user(request)
    ws = _STORE.get_workspace(workspace_id)
    if ws is None:
        return not_found("Workspace")
    decision = permissions.can_remove_workspace_member(ws, user.user_id, member_user_id)
    if not decision:
        return denied(decision)
    if not _STORE.remove_member(workspace_id, member_user_id):
        return not_found("Member")
    ws = _STORE.get_workspace(workspace_id)
    return JSONResponse({"status": "ok", "workspace": _with_my_role(ws, user.user_id)})


@router.patch("/{workspace_id}/members/{member_user_id}")
async def update_member(request: Request, workspace_id: str, member_user_id: str):
    user = current_user(request)
    ws = _STORE.get_workspace(workspace_id)
    if ws is None:
        return not_found("Workspace")
    decision = permissions.can_mutate_workspace(ws, user.user_id)
    if not decision:
        return denied(decision)
    body = await read_json(request)
    if body is None:
        return error("Invalid request")
    try:
        updated = _STORE.update_member_role(workspace_id, member_user_id, body.get("role") or "")
    except ValueError as e:
        return error(str(e), code="validation_failed")
    if not updated:
        return not_found("Member")
    return JSONResponse({"status": "ok"})


# =====================================================================
# INVITATIONS
# =====================================================================

@router.get("/{workspace_id}/invitations")
def list_invitations(request: Request, workspace_id: str, status: str = ""):
    user = current_user(request)
    ws = _STORE.get_workspace(workspace_id)
    if ws is None:
        return not_found("Workspace")
    decision = permissions.can_mutate_workspace(ws, user.user_id)
    if not decision:
        return denied(decision)
    invitations = _INVITATIONS.list_for_workspace(workspace_id, status or None)
    return JSONResponse({"status": "ok", "invitations": [i.summary() for i in invitations]})

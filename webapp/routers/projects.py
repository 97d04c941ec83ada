"""API router for projects and project membership.

Prefix: /api/projects
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from webapp.auth import permissions

from .common import current_user, denied, error, not_found, read_json

log = logging.getLogger("teamhub.projects")

router = APIRouter(prefix="/api/projects", tags=["projects"])

# Injected from server.py
_PROJECTS = None    # ProjectStore
_WORKSPACES = None  # WorkspaceStore
_TASKS = None       # TaskStore
_WORKFLOW = None    # InvitationWorkflow


def init(*, project_store, workspace_store, task_store, workflow) -> None:
    global _PROJECTS, _WORKSPACES, _TASKS, _WORKFLOW
    _PROJECTS = project_store
    _WORKSPACES = workspace_store
    _TASKS = task_store
    _WORKFLOW = workflow


def _load(project_id: str):
    """(project, workspace, error_response)."""
    project = _PROJECTS.get_project(project_id)
    if project is None:
        return None, None, not_found("Project")
    ws = _WORKSPACES.get_workspace(project.workspace_id)
    if ws is None:
        return None, None, not_found("Workspace")
    return project, ws, None


@router.get("")
def list_projects(request: Request, workspace_id: str = ""):
    user = current_user(request)
    projects = _PROJECTS.list_for_user(user.user_id, workspace_id or None)
    return JSONResponse({"status": "ok", "projects": [p.to_dict() for p in projects]})


@router.post("")
async def create_project(request: Request):
    user = current_user(request)
    body = await read_json(request)
    if body is None:
        return error("Invalid request")

    name = (body.get("name") or "").strip()
    if not 2 <= len(name) <= 100:
        return error("Project name must be between 2 and 100 characters", code="validation_failed")
    workspace_id = body.get("workspace_id") or body.get("workspace") or ""
    ws = _WORKSPACES.get_workspace(workspace_id)
    if ws is None:
        return not_found("Workspace")
    decision = permissions.can_access_workspace(ws, user.user_id)
    if not decision:
        return denied(decision)

    try:
        project = _PROJECTS.create_project(
            workspace_id=ws.workspace_id,
            created_by=user.user_id,
            name=name,
            description=(body.get("description") or "").strip(),
            status=body.get("status") or "planning",
            priority=body.get("priority") or "medium",
            due_date=body.get("due_date"),
            tags=body.get("tags") or [],
        )
    except ValueError as e:
        return error(str(e), code="validation_failed")
    return JSONResponse({"status": "ok", "project": project.to_dict()}, 201)


@router.get("/{project_id}")
def get_project(request: Request, project_id: str):
    user = current_user(request)
    project, ws, resp = _load(project_id)
    if resp is not None:
        return resp
    decision = permissions.can_access_project(project, ws, user.user_id)
    if not decision:
        return denied(decision)
    data = project.to_dict()
    data["tasks"] = [t.to_dict() for t in _TASKS.list_for_project(project_id)]
    return JSONResponse({"status": "ok", "project": data})


@router.patch("/{project_id}")
async def update_project(request: Request, project_id: str):
    user = current_user(request)
    project, ws, resp = _load(project_id)
    if resp is not None:
        return resp
    decision = permissions.can_mutate_project(project, ws, user.user_id)
    if not decision:
        return denied(decision)
    body = await read_json(request)
    if body is None:
        return error("Invalid request")
    try:
        project = _PROJECTS.update_project(project_id, body)
    except ValueError as e:
        return error(str(e), code="validation_failed")
    return JSONResponse({"status": "ok", "project": project.to_dict()})


@router.delete("/{project_id}")
def delete_project(request: Request, project_id: str):
    user = current_user(request)
    project, ws, resp = _load(project_id)
    if resp is not None:
        return resp
    decision = permissions.can_delete_project(project, ws, user.user_id)
    if not decision:
        return denied(decision)
    _PROJECTS.archive_project(project_id)
    return JSONResponse({"status": "ok"})


# --- Members ---

@router.post("/{project_id}/members")
async def add_member(request: Request, project_id: str):
    """Assign a member by email; unknown emails get a persisted project invitation."""
    user = current_user(request)
    project, ws, resp = _load(project_id)
    if resp is not None:
        return resp
    decision = permissions.can_manage_project_members(project, ws, user.user_id)
    if not decision:
        return denied(decision)
    body = await read_json(request)
    if body is None:
        return error("Invalid request")

    try:
        result = _WORKFLOW.add_project_member_by_email(
            project, user, body.get("email") or "", body.get("role") or "member"
        )
    except ValueError as e:
        return error(str(e), code="validation_failed")

    if not result.user_exists:
        return JSONResponse({
            "status": "ok",
            "message": "User does not exist. Project invitation email sent.",
            "user_exists": False,
            "invitation": result.invitation.summary(),
        }, 201)
    return JSONResponse({
        "status": "ok",
        "message": "Member added successfully",
        "user_exists": True,
        "workspace_joined": result.workspace_joined,
        "workspace_join": result.workspace_join,
        "project": _PROJECTS.get_project(project_id).to_dict(),
    })


@router.delete("/{project_id}/members/{member_user_id}")
def remove_member(request: Request, project_id: str, member_user_id: str):
    user = current_user(request)
    project, ws, resp = _load(project_id)
    if resp is not None:
        return resp
    decision = permissions.can_remove_project_member(project, ws, user.user_id, member_user_id)
    if not decision:
        return denied(decision)
    if not _PROJECTS.remove_member(project_id, member_user_id):
        return not_found("Member")
    _TASKS.remove_user_from_project_tasks(project_id, member_user_id)
    return JSONResponse({"status": "ok", "project": _PROJECTS.get_project(project_id).to_dict()})

"""API router for tasks, assignees and comments.

Prefix: /api/tasks
"""
from __future__ import annotations

import logging
from typing import Any, List

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from webapp.auth import permissions

from .common import current_user, denied, error, not_found, read_json

log = logging.getLogger("teamhub.tasks")

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

# Injected from server.py
_TASKS = None       # TaskStore
_PROJECTS = None    # ProjectStore
_WORKSPACES = None  # WorkspaceStore
_USERS = None       # UserStore
_NOTIFIER = None    # NotificationDispatcher


def init(*, task_store, project_store, workspace_store, user_store, notifier=None) -> None:
    global _TASKS, _PROJECTS, _WORKSPACES, _USERS, _NOTIFIER
    _TASKS = task_store
    _PROJECTS = project_store
    _WORKSPACES = workspace_store
    _USERS = user_store
    _NOTIFIER = notifier


def _notify(kind: str, recipient: str, args: dict) -> None:
    if _NOTIFIER is None:
        return
    args = dict(args)
    if "link" in args:
        args["link"] = _NOTIFIER.link(args["link"])
    _NOTIFIER.send(kind, recipient, args)


def _unknown_users(user_ids: List[str]) -> List[str]:
    return [uid for uid in user_ids if _USERS.get_user(uid) is None]


def _assignee_ids(raw: Any) -> List[str]:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    return [str(x) for x in raw if x]


def _notify_assigned(task, assigner, user_ids: List[str]) -> None:
    project = _PROJECTS.get_project(task.project_id)
    for uid in user_ids:
        if uid == assigner.user_id:
            continue
        assignee = _USERS.get_user(uid)
        if assignee is None:
            continue
        _notify("task_assignment", assignee.email, {
            "assigner_name": assigner.name,
            "task_title": task.title,
            "project_name": project.name if project else "",
            "link": f"/tasks/{task.task_id}",
        })


def _load_task(request: Request, task_id: str, gate):
    """(task, error_response) after running the given task gate."""
    user = current_user(request)
    task = _TASKS.get_task(task_id)
    if task is None:
        return None, not_found("Task")
    decision = gate(task, user.user_id, user.role)
    if not decision:
        return None, denied(decision)
    return task, None


# =====================================================================
# TASKS
# =====================================================================

@router.get("")
def list_tasks(request: Request, project_id: str = "", workspace_id: str = "", status: str = "",
               priority: str = "", assigned_to: str = ""):
    user = current_user(request)
    tasks = _TASKS.list_for_user(
        user.user_id,
        project_id=project_id or None,
        workspace_id=workspace_id or None,
        status=status or None,
        priority=priority or None,
        assigned_to=assigned_to or None,
    )
    return JSONResponse({"status": "ok", "tasks": [t.to_dict() for t in tasks]})


@router.post("")
async def create_task(request: Request):
    user = current_user(request)
    body = await read_json(request)
    if body is None:
        return error("Invalid request")

    title = (body.get("title") or "").strip()
    if not 1 <= len(title) <= 200:
        return error("Task title must be between 1 and 200 characters", code="validation_failed")

    project = _PROJECTS.get_project(body.get("project_id") or body.get("project") or "")
    if project is None:
        return not_found("Project")
    ws = _WORKSPACES.get_workspace(project.workspace_id)
    if ws is None:
        return not_found("Workspace")
    decision = permissions.can_access_project(project, ws, user.user_id)
    if not decision:
        return denied(decision)

    assignees = _assignee_ids(body.get("assigned_to"))
    missing = _unknown_users(assignees)
    if missing:
        return error("Assignee not found", 400, "validation_failed")

    try:
        task = _TASKS.create_task(
            project_id=project.project_id,
            workspace_id=project.workspace_id,
            created_by=user.user_id,
            title=title,
            description=(body.get("description") or "").strip(),
            priority=body.get("priority") or "medium",
            due_date=body.get("due_date"),
            assignees=assignees,
            tags=body.get("tags") or [],
            start_date=body.get("start_date"),
            estimated_hours=body.get("estimated_hours"),
            subtasks=body.get("subtasks") or [],
        )
    except ValueError as e:
        return error(str(e), code="validation_failed")

    _notify_assigned(task, user, [a.user_id for a in task.assigned_to])
    return JSONResponse({"status": "ok", "task": task.to_dict()}, 201)


@router.get("/{task_id}")
def get_task(request: Request, task_id: str):
    task, resp = _load_task(request, task_id, permissions.can_access_task)
    if resp is not None:
        return resp
    return JSONResponse({"status": "ok", "task": task.to_dict()})


@router.patch("/{task_id}")
async def update_task(request: Request, task_id: str):
    task, resp = _load_task(request, task_id, permissions.can_mutate_task)
    if resp is not None:
        return resp
    body = await read_json(request)
    if body is None:
        return error("Invalid request")
    try:
        task = _TASKS.update_task(task_id, body)
    except ValueError as e:
        return error(str(e), code="validation_failed")
    return JSONResponse({"status": "ok", "task": task.to_dict()})


@router.delete("/{task_id}")
def delete_task(request: Request, task_id: str):
    task, resp = _load_task(request, task_id, permissions.can_delete_task)
    if resp is not None:
        return resp
    _TASKS.archive_task(task_id)
    return JSONResponse({"status": "ok"})


@router.post("/{task_id}/assign")
async def assign_task(request: Request, task_id: str):
    """Add assignees; only the newly added ones are notified."""
    task, resp = _load_task(request, task_id, permissions.can_mutate_task)
    if resp is not None:
        return resp
    body = await read_json(request)
    if body is None:
        return error("Invalid request")
    user_ids = _assignee_ids(body.get("user_ids") or body.get("user_id"))
    if not user_ids:
        return error("user_ids is required", code="validation_failed")
    if _unknown_users(user_ids):
        return error("Assignee not found", 400, "validation_failed")

    user = current_user(request)
    added = _TASKS.add_assignees(task_id, user_ids, assigned_by=user.user_id)
    task = _TASKS.get_task(task_id)
    _notify_assigned(task, user, added)
    return JSONResponse({"status": "ok", "added": added, "task": task.to_dict()})


# =====================================================================
# COMMENTS
# =====================================================================

@router.post("/{task_id}/comments")
async def add_comment(request: Request, task_id: str):
    task, resp = _load_task(request, task_id, permissions.can_mutate_task)
    if resp is not None:
        return resp
    body = await read_json(request)
    if body is None:
        return error("Invalid request")
    content = (body.get("content") or "").strip()
    if not content:
        return error("Comment content is required", code="validation_failed")

    user = current_user(request)
    try:
        comment = _TASKS.add_comment(task_id, user.user_id, content)
    except ValueError as e:
        return error(str(e), code="validation_failed")

    # Creator and assignees hear about it, the author does not
    recipients = {task.created_by, *(a.user_id for a in task.assigned_to)}
    recipients.discard(user.user_id)
    for uid in sorted(recipients):
        target = _USERS.get_user(uid)
        if target is None:
            continue
        _notify("comment_notification", target.email, {
            "commenter_name": user.name,
            "task_title": task.title,
            "comment": content,
            "link": f"/tasks/{task.task_id}",
        })
    return JSONResponse({"status": "ok", "comment": comment.to_dict()}, 201)


@router.patch("/{task_id}/comments/{comment_id}")
async def update_comment(request: Request, task_id: str, comment_id: str):
    task = _TASKS.get_task(task_id)
    if task is None:
        return not_found("Task")
    comment = task.get_comment(comment_id)
    if comment is None:
        return not_found("Comment")
    user = current_user(request)
    decision = permissions.can_edit_comment(comment, user.user_id, user.role)
    if not decision:
        return denied(decision)
    body = await read_json(request)
    if body is None:
        return error("Invalid request")
    content = (body.get("content") or "").strip()
    if not content:
        return error("Comment content is required", code="validation_failed")
    try:
        _TASKS.update_comment(task_id, comment_id, content)
    except ValueError as e:
        return error(str(e), code="validation_failed")
    updated = _TASKS.get_task(task_id).get_comment(comment_id)
    return JSONResponse({"status": "ok", "comment": updated.to_dict()})


@router.delete("/{task_id}/comments/{comment_id}")
def delete_comment(request: Request, task_id: str, comment_id: str):
    task = _TASKS.get_task(task_id)
    if task is None:
        return not_found("Task")
    comment = task.get_comment(comment_id)
    if comment is None:
        return not_found("Comment")
    user = current_user(request)
    decision = permissions.can_delete_comment(comment, user.user_id, user.role)
    if not decision:
        return denied(decision)
    _TASKS.delete_comment(task_id, comment_id)
    return JSONResponse({"status": "ok"})

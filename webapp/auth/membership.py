"""Membership resolution over already-fetched entities.

Ownership and membership are separate facts: a workspace owner is not a
member unless listed in ``members``. Callers needing "owner or member" must
test both.
"""
from __future__ import annotations

from typing import Optional

from .project_store import Project
from .task_store import Task
from .workspace_store import Workspace


def is_workspace_owner(workspace: Workspace, user_id: str) -> bool:
    return workspace.owner_id == user_id


def is_workspace_member(workspace: Workspace, user_id: str) -> bool:
    return any(m.user_id == user_id for m in workspace.members)


def workspace_role(workspace: Workspace, user_id: str) -> Optional[str]:
    """Role of the first matching member entry, None if not listed (even for the owner)."""
    for m in workspace.members:
        if m.user_id == user_id:
            return m.role
    return None


def is_project_assigned(project: Project, user_id: str) -> bool:
    return any(m.user_id == user_id for m in project.assigned_members)


def project_role(project: Project, user_id: str) -> Optional[str]:
    for m in project.assigned_members:
        if m.user_id == user_id:
            return m.role
    return None


def is_project_creator(project: Project, user_id: str) -> bool:
    return project.created_by == user_id


def is_task_assigned(task: Task, user_id: str) -> bool:
    return any(a.user_id == user_id for a in task.assigned_to)

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .membership import (
    is_project_assigned,
    is_project_creator,
    is_task_assigned,
    is_workspace_member,
    is_workspace_owner,
    project_role,
    workspace_role,
)
from .project_store import Project
from .task_store import Comment, Task
from .workspace_store import Workspace

# ---------------------------------------------------------------------------
# Reason codes → (HTTP status, user-facing message)
# ---------------------------------------------------------------------------

REASONS: Dict[str, Tuple[int, str]] = {
    "not_workspace_member": (403, "Access denied. You are not a member of this workspace."),
    "workspace_admin_required": (403, "Access denied. Only owner or admin can manage this workspace."),
    "owner_required": (403, "Access denied. Only workspace owner can delete the workspace."),
    "owner_unremovable": (400, "Cannot remove workspace owner."),
    "cannot_remove_self": (400, "Cannot remove yourself. Leave workspace instead."),
    "not_project_member": (403, "Access denied. You are not assigned to this project."),
    "project_lead_required": (403, "Access denied. Only project creator, workspace owner, or project lead can do this."),
    "project_owner_required": (403, "Access denied. Only project creator or workspace owner can delete the project."),
    "creator_unremovable": (400, "Cannot remove project creator."),
    "not_task_participant": (403, "Access denied. Only task creator, assigned users, or admin can do this."),
    "task_creator_required": (403, "Access denied. Only task creator or admin can delete the task."),
    "comment_author_required": (403, "Access denied. Only the comment author or admin can change this comment."),
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason_code: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed

    @property
    def status_code(self) -> int:
        if self.allowed:
            return 200
        return REASONS.get(self.reason_code or "", (403, ""))[0]

    @property
    def message(self) -> str:
        if self.allowed:
            return ""
        return REASONS.get(self.reason_code or "", (403, "Access denied"))[1]


ALLOW = Decision(True)


def _deny(reason_code: str) -> Decision:
    return Decision(False, reason_code)


def _is_global_admin(global_role: Optional[str]) -> bool:
    return global_role == "admin"


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------

def can_access_workspace(workspace: Workspace, user_id: str) -> Decision:
    if is_workspace_owner(workspace, user_id) or is_workspace_member(workspace, user_id):
        return ALLOW
    return _deny("not_workspace_member")


def can_mutate_workspace(workspace: Workspace, user_id: str) -> Decision:
    # Owner wins over whatever role is stored in the member list
    if is_workspace_owner(workspace, user_id) or workspace_role(workspace, user_id) == "admin":
        return ALLOW
    return _deny("workspace_admin_required")


def can_delete_workspace(workspace: Workspace, user_id: str) -> Decision:
    if is_workspace_owner(workspace, user_id):
        return ALLOW
    return _deny("owner_required")


def can_remove_workspace_member(workspace: Workspace, user_id: str, target_user_id: str) -> Decision:
    decision = can_mutate_workspace(workspace, user_id)
    if not decision:
        return decision
    if is_workspace_owner(workspace, target_user_id):
        return _deny("owner_unremovable")
    if target_user_id == user_id:
        return _deny("cannot_remove_self")
    return ALLOW


# ---------------------------------------------------------------------------
# Project (workspace access is necessary, not sufficient)
# ---------------------------------------------------------------------------

def can_access_project(project: Project, workspace: Workspace, user_id: str) -> Decision:
    decision = can_access_workspace(workspace, user_id)
    if not decision:
        return decision
    if (
        is_project_assigned(project, user_id)
        or is_project_creator(project, user_id)
        or is_workspace_owner(workspace, user_id)
    ):
        return ALLOW
    return _deny("not_project_member")


def can_mutate_project(project: Project, workspace: Workspace, user_id: str) -> Decision:
    if (
        is_project_creator(project, user_id)
        or is_workspace_owner(workspace, user_id)
        or project_role(project, user_id) == "lead"
    ):
        return ALLOW
    return _deny("project_lead_required")


can_manage_project_members = can_mutate_project


def can_delete_project(project: Project, workspace: Workspace, user_id: str) -> Decision:
    if is_project_creator(project, user_id) or is_workspace_owner(workspace, user_id):
        return ALLOW
    return _deny("project_owner_required")


def can_remove_project_member(project: Project, workspace: Workspace, user_id: str,
                              target_user_id: str) -> Decision:
    decision = can_manage_project_members(project, workspace, user_id)
    if not decision:
        return decision
    if is_project_creator(project, target_user_id):
        return _deny("creator_unremovable")
    return ALLOW


# ---------------------------------------------------------------------------
# Task (does not follow from project access)
# ---------------------------------------------------------------------------

def can_access_task(task: Task, user_id: str, global_role: Optional[str]) -> Decision:
    if task.created_by == user_id or is_task_assigned(task, user_id) or _is_global_admin(global_role):
        return ALLOW
    return _deny("not_task_participant")


# Update, assign and comment share the access predicate
can_mutate_task = can_access_task


def can_delete_task(task: Task, user_id: str, global_role: Optional[str]) -> Decision:
    if task.created_by == user_id or _is_global_admin(global_role):
        return ALLOW
    return _deny("task_creator_required")


def can_edit_comment(comment: Comment, user_id: str, global_role: Optional[str]) -> Decision:
    if comment.user_id == user_id or _is_global_admin(global_role):
        return ALLOW
    return _deny("comment_author_required")


can_delete_comment = can_edit_comment

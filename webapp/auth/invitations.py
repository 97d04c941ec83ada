"""Invitation workflow: issue, verify and accept membership invitations.

State per invitation: pending -> accepted (once, irreversibly). An invitation
whose ``expires_at`` has passed is treated as invalid whatever its stored
status. Accepting claims the invitation with a conditional write before any
membership is added, so two concurrent accepts cannot both apply.

Project invitations and direct project adds also put the user into the
owning workspace (role ``member``). That second write is best-effort: a
failure is logged at error level and the project assignment stands.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from backend.db.engine import to_iso

from .errors import Conflict, DownstreamFailure, Forbidden, InvalidInvitation, NotFound
from .invitation_store import Invitation, InvitationStore
from .membership import is_project_assigned, is_workspace_member
from .passwords import generate_invitation_token, is_valid_email, normalize_email
from .project_store import PROJECT_ROLES, Project, ProjectStore
from .user_store import UserRecord, UserStore
from .workspace_store import WORKSPACE_ROLES, Workspace, WorkspaceStore

log = logging.getLogger("teamhub.invitations")

# Outcome of the secondary workspace write on project joins
JOINED = "joined"
ALREADY_MEMBER = "already_member"
JOIN_FAILED = "failed"


@dataclass
class AcceptResult:
    invitation: Invitation
    workspace: Optional[Workspace] = None
    project: Optional[Project] = None
    workspace_join: Optional[str] = None

    @property
    def workspace_joined(self) -> bool:
        return self.workspace_join == JOINED


@dataclass
class AddMemberResult:
    """Outcome of add-by-email: either a direct add or a persisted invitation."""
    user_exists: bool
    user: Optional[UserRecord] = None
    invitation: Optional[Invitation] = None
    workspace_join: Optional[str] = None

    @property
    def workspace_joined(self) -> bool:
        return self.workspace_join == JOINED


def _check_role(inv_type: str, role: str) -> None:
    allowed = WORKSPACE_ROLES if inv_type == "workspace" else PROJECT_ROLES
    if role not in allowed:
        raise ValueError(f"Invalid role '{role}'")


class InvitationWorkflow:

    def __init__(
        self,
        users: UserStore,
        workspaces: WorkspaceStore,
        projects: ProjectStore,
        invitations: InvitationStore,
        notifier: Any = None,
        ttl_days: int = 7,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.users = users
        self.workspaces = workspaces
        self.projects = projects
        self.invitations = invitations
        self.notifier = notifier
        self.ttl = timedelta(days=ttl_days)
        self.clock = clock

    # ---- helpers ----

    def _notify(self, kind: str, recipient: str, args: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send(kind, recipient, args)
        except Exception:
            log.exception("Notification %s to %s failed", kind, recipient)

    def _link(self, path: str) -> str:
        if self.notifier is None:
            return path
        return self.notifier.link(path)

    def _inviter_name(self, user_id: str) -> str:
        user = self.users.get_user(user_id)
        return user.name if user else "A teammate"

    def _ensure_workspace_member(self, workspace_id: str, user_id: str,
                                 invited_by: Optional[str]) -> str:
        """Secondary write for project joins: JOINED, ALREADY_MEMBER or JOIN_FAILED (logged)."""
        try:
            added = self.workspaces.add_member(workspace_id, user_id, "member", invited_by)
        except Exception:
            log.exception(
                "Workspace auto-join failed for user %s in workspace %s; "
                "project assignment kept", user_id, workspace_id,
            )
            return JOIN_FAILED
        return JOINED if added else ALREADY_MEMBER

    # ---- issue ----

    def issue_invitation(self, email: str, role: str, inv_type: str, workspace_id: str,
                         inviter_id: str, project_id: Optional[str] = None) -> Invitation:
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValueError("Please provide a valid email")
        _check_role(inv_type, role)

        workspace = self.workspaces.get_workspace(workspace_id)
        if workspace is None:
            raise NotFound("Workspace not found")
        project = None
        if inv_type == "project":
            project = self.projects.get_project(project_id or "")
            if project is None or project.workspace_id != workspace_id:
                raise NotFound("Project not found")

        now = self.clock()
        existing = self.invitations.find_pending(email, workspace_id, inv_type, project_id, now=now)
        if existing is not None:
            log.warning("Duplicate %s invitation for %s in %s", inv_type, email, project_id or workspace_id)
            raise Conflict("Invitation already sent to this email.", code="duplicate_invitation")

        inv = self.invitations.create_invitation(
            email=email,
            role=role,
            inv_type=inv_type,
            workspace_id=workspace_id,
            invited_by=inviter_id,
            token=generate_invitation_token(),
            expires_at=now + self.ttl,
            project_id=project_id if inv_type == "project" else None,
        )
        log.info("Invitation issued: %s -> %s (%s %s)", inviter_id, email, inv_type,
                 project_id or workspace_id)

        args: Dict[str, Any] = {
            "inviter_name": self._inviter_name(inviter_id),
            "link": self._link(f"/invitations/accept?token={inv.token}"),
            "expires_days": self.ttl.days,
        }
        if project is not None:
            args["project_name"] = project.name
            self._notify("project_invitation", email, args)
        else:
            args["workspace_name"] = workspace.name
            self._notify("workspace_invitation", email, args)
        return inv

    # ---- verify ----

    def verify_invitation(self, token: str) -> Dict[str, Any]:
        """Read-only check. Raises InvalidInvitation unless pending and unexpired."""
        inv = self.invitations.find_valid(token, now=self.clock()) if token else None
        if inv is None:
            raise InvalidInvitation()
        user_exists = self.users.get_by_email(inv.email) is not None
        return {"invitation": inv, "user_exists": user_exists}

    # ---- accept ----

    def accept_invitation(self, token: str, caller_id: Optional[str] = None) -> AcceptResult:
        now = self.clock()
        inv = self.invitations.find_valid(token, now=now) if token else None
        if inv is None:
            stale = self.invitations.get_by_token(token) if token else None
            if stale is not None and stale.status == "accepted":
                raise Conflict("Invitation has already been accepted", code="invitation_already_accepted")
            raise InvalidInvitation()

        user = self.users.get_by_email(inv.email)
        if user is None:
            raise Conflict(
                "User account not found. Please make sure you are logged in with the correct email.",
                code="user_not_found",
            )
        if caller_id and caller_id != user.user_id:
            raise Forbidden("This invitation was sent to a different email address.",
                            code="invitation_email_mismatch")

        workspace = None
        project = None
        if inv.type == "project":
            project = self.projects.get_project(inv.project_id or "")
            if project is None:
                raise NotFound("Project not found")
            if is_project_assigned(project, user.user_id):
                raise Conflict("You are already a member of this project", code="already_assigned")
        else:
            workspace = self.workspaces.get_workspace(inv.workspace_id)
            if workspace is None:
                raise NotFound("Workspace not found")
            if is_workspace_member(workspace, user.user_id):
                raise Conflict("You are already a member of this workspace", code="already_member")

        if not self.invitations.mark_accepted(token, now=now):
            # Another request claimed it between the read and the write
            raise Conflict("Invitation has already been accepted", code="invitation_already_accepted")

        result = AcceptResult(invitation=inv)
        try:
            if project is not None:
                self.projects.add_member(project.project_id, user.user_id, inv.role)
            else:
                self.workspaces.add_member(inv.workspace_id, user.user_id, inv.role, inv.invited_by)
        except Exception:
            log.exception("Membership write failed for invitation %s; releasing claim", inv.invitation_id)
            self.invitations.release_claim(token)
            raise DownstreamFailure("Could not accept invitation")

        if project is not None:
            result.workspace_join = self._ensure_workspace_member(
                project.workspace_id, user.user_id, inv.invited_by
            )
            result.project = self.projects.get_project(project.project_id)
        else:
            result.workspace = self.workspaces.get_workspace(inv.workspace_id)

        inv.status = "accepted"
        inv.accepted_at = to_iso(now)
        log.info("Invitation %s accepted by %s (%s)", inv.invitation_id, user.user_id, inv.type)
        return result

    # ---- registration ----

    def auto_accept_at_registration(self, user: UserRecord, payload: Optional[Dict[str, Any]]) -> bool:
        """Apply an invitation payload sent with registration.

        The ids come straight from the client; no token or expiry check. Any
        failure is logged and reported as False, never raised.
        """
        if not payload:
            return False
        try:
            return self._auto_accept(user, payload)
        except Exception:
            log.exception("Error accepting invitation during registration for %s", user.email)
            return False

    def _auto_accept(self, user: UserRecord, payload: Dict[str, Any]) -> bool:
        project_id = payload.get("project_id") or payload.get("projectId")
        workspace_id = payload.get("workspace_id") or payload.get("workspaceId")
        now = self.clock()

        if project_id:
            project = self.projects.get_project(project_id)
            if project is None:
                log.warning("Registration invitation: project %s not found", project_id)
                return False
            if is_project_assigned(project, user.user_id):
                log.warning("Registration invitation: %s already assigned to %s", user.user_id, project_id)
                return False
            role = payload.get("role") or "member"
            _check_role("project", role)
            self.projects.add_member(project_id, user.user_id, role)
            self._ensure_workspace_member(project.workspace_id, user.user_id, project.created_by)
            pending = self.invitations.find_pending(user.email, project.workspace_id, "project",
                                                    project_id, now=now)
        elif workspace_id:
            workspace = self.workspaces.get_workspace(workspace_id)
            if workspace is None:
                log.warning("Registration invitation: workspace %s not found", workspace_id)
                return False
            if is_workspace_member(workspace, user.user_id):
                log.warning("Registration invitation: %s already in workspace %s", user.user_id, workspace_id)
                return False
            role = payload.get("role") or "member"
            _check_role("workspace", role)
            self.workspaces.add_member(workspace_id, user.user_id, role, workspace.owner_id)
            pending = self.invitations.find_pending(user.email, workspace_id, "workspace", now=now)
        else:
            return False

        if pending is not None:
            self.invitations.mark_accepted(pending.token, now=now)
        log.info("User %s accepted invitation during registration", user.email)
        return True

    # ---- add member by email ----

    def add_workspace_member_by_email(self, workspace: Workspace, inviter: UserRecord,
                                      email: str, role: str = "member") -> AddMemberResult:
        email = normalize_email(email)
        _check_role("workspace", role)
        user = self.users.get_by_email(email)
        if user is None:
            inv = self.issue_invitation(email, role, "workspace", workspace.workspace_id, inviter.user_id)
            return AddMemberResult(user_exists=False, invitation=inv)

        if is_workspace_member(workspace, user.user_id):
            raise Conflict("User is already a member of this workspace.", code="already_member")
        self.workspaces.add_member(workspace.workspace_id, user.user_id, role, inviter.user_id)
        self._notify("workspace_invitation", user.email, {
            "inviter_name": inviter.name,
            "workspace_name": workspace.name,
            "link": self._link(f"/workspaces/{workspace.workspace_id}"),
        })
        return AddMemberResult(user_exists=True, user=user)

    def add_project_member_by_email(self, project: Project, inviter: UserRecord,
                                    email: str, role: str = "member") -> AddMemberResult:
        email = normalize_email(email)
        _check_role("project", role)
        user = self.users.get_by_email(email)
        if user is None:
            inv = self.issue_invitation(email, role, "project", project.workspace_id,
                                        inviter.user_id, project_id=project.project_id)
            return AddMemberResult(user_exists=False, invitation=inv)

        if is_project_assigned(project, user.user_id):
            raise Conflict("User is already assigned to this project.", code="already_assigned")
        self.projects.add_member(project.project_id, user.user_id, role)
        join = self._ensure_workspace_member(project.workspace_id, user.user_id, inviter.user_id)
        self._notify("project_invitation", user.email, {
            "inviter_name": inviter.name,
            "project_name": project.name,
            "link": self._link(f"/projects/{project.project_id}"),
        })
        return AddMemberResult(user_exists=True, user=user, workspace_join=join)

"""Invitation records, SQLite-backed.

An invitation is valid for acceptance only while ``status = 'pending'`` and
``expires_at > now``; expiry is evaluated at read time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from backend.db.engine import new_id, now_iso, to_iso

from .passwords import normalize_email

log = logging.getLogger("teamhub.invitations")

INVITATION_TYPES = ("workspace", "project")


@dataclass
class Invitation:
    invitation_id: str
    email: str
    role: str
    type: str
    workspace_id: str
    invited_by: str
    token: str
    expires_at: str
    project_id: Optional[str] = None
    status: str = "pending"
    created_at: str = ""
    accepted_at: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        """Client-facing view (no token)."""
        return {
            "id": self.invitation_id,
            "email": self.email,
            "role": self.role,
            "type": self.type,
            "workspace_id": self.workspace_id,
            "project_id": self.project_id,
            "invited_by": self.invited_by,
            "status": self.status,
            "expires_at": self.expires_at,
            "created_at": self.created_at,
        }


class InvitationStore:

    def _conn(self):
        from backend.db.engine import get_conn
        return get_conn()

    @staticmethod
    def _from_row(row) -> Invitation:
        d = dict(row)
        return Invitation(
            invitation_id=d["id"],
            email=d["email"],
            role=d["role"],
            type=d["type"],
            workspace_id=d["workspace_id"],
            invited_by=d["invited_by"],
            token=d["token"],
            expires_at=d["expires_at"],
            project_id=d.get("project_id"),
            status=d["status"],
            created_at=d.get("created_at", ""),
            accepted_at=d.get("accepted_at"),
        )

    def create_invitation(
        self,
        email: str,
        role: str,
        inv_type: str,
        workspace_id: str,
        invited_by: str,
        token: str,
        expires_at: datetime,
        project_id: Optional[str] = None,
    ) -> Invitation:
        if inv_type not in INVITATION_TYPES:
            raise ValueError(f"Invalid invitation type '{inv_type}'")
        if (inv_type == "project") != bool(project_id):
            raise ValueError("project_id must be set exactly for project invitations")
        inv = Invitation(
            invitation_id=new_id(),
            email=normalize_email(email),
            role=role,
            type=inv_type,
            workspace_id=workspace_id,
            invited_by=invited_by,
            token=token,
            expires_at=to_iso(expires_at),
            project_id=project_id,
            created_at=now_iso(),
        )
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO invitations
                   (id, email, role, type, workspace_id, project_id, invited_by, token,
                    status, expires_at, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)""",
                (inv.invitation_id, inv.email, inv.role, inv.type, inv.workspace_id,
                 inv.project_id, inv.invited_by, inv.token, inv.expires_at, inv.created_at),
            )
        return inv

    def get_by_token(self, token: str) -> Optional[Invitation]:
        """Any invitation with this token, regardless of status."""
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM invitations WHERE token = ?", (token,)).fetchone()
            return self._from_row(row) if row else None

    def find_valid(self, token: str, now: Optional[datetime] = None) -> Optional[Invitation]:
        """Pending and unexpired invitation for the token, else None."""
        now_s = to_iso(now or datetime.now())
        with self._conn() as conn:
            row = conn.execute(
                """SELECT * FROM invitations
                   WHERE token = ? AND status = 'pending' AND expires_at > ?""",
                (token, now_s),
            ).fetchone()
            return self._from_row(row) if row else None

    def find_pending(self, email: str, workspace_id: str, inv_type: str,
                     project_id: Optional[str] = None,
                     now: Optional[datetime] = None) -> Optional[Invitation]:
        """Pending, unexpired invitation for the same email and scope."""
        sql = """SELECT * FROM invitations
                 WHERE email = ? AND workspace_id = ? AND type = ?
                   AND status = 'pending' AND expires_at > ?"""
        params: List[Any] = [normalize_email(email), workspace_id, inv_type, to_iso(now or datetime.now())]
        if project_id:
            sql += " AND project_id = ?"
            params.append(project_id)
        sql += " ORDER BY created_at DESC"
        with self._conn() as conn:
            row = conn.execute(sql, params).fetchone()
            return self._from_row(row) if row else None

    def mark_accepted(self, token: str, now: Optional[datetime] = None) -> bool:
        """Claim the invitation: pending -> accepted in a single conditional write.

        Returns False when the invitation is no longer pending or has expired,
        which includes losing a race with a concurrent accept.
        """
        now_s = to_iso(now or datetime.now())
        with self._conn() as conn:
            cursor = conn.execute(
                """UPDATE invitations SET status = 'accepted', accepted_at = ?
                   WHERE token = ? AND status = 'pending' AND expires_at > ?""",
                (now_s, token, now_s),
            )
            return cursor.rowcount == 1

    def release_claim(self, token: str) -> bool:
        """Undo ``mark_accepted`` when the membership write behind it failed."""
        with self._conn() as conn:
            cursor = conn.execute(
                """UPDATE invitations SET status = 'pending', accepted_at = NULL
                   WHERE token = ? AND status = 'accepted'""",
                (token,),
            )
            return cursor.rowcount == 1

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Persist 'expired' on lapsed pending invitations. Returns count."""
        now_s = to_iso(now or datetime.now())
        with self._conn() as conn:
            cursor = conn.execute(
                "UPDATE invitations SET status = 'expired' WHERE status = 'pending' AND expires_at <= ?",
                (now_s,),
            )
        if cursor.rowcount:
            log.info("Marked %d invitations expired", cursor.rowcount)
        return cursor.rowcount

    def list_for_workspace(self, workspace_id: str, status: Optional[str] = None) -> List[Invitation]:
        sql = "SELECT * FROM invitations WHERE workspace_id = ?"
        params: List[Any] = [workspace_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY created_at DESC"
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [self._from_row(r) for r in rows]

"""Workspace management, SQLite-backed.

A workspace is returned with its member roster embedded (ordered by join
position), so permission checks can run on the fetched object alone.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from backend.db.engine import new_id, now_iso

log = logging.getLogger("teamhub.workspaces")

WORKSPACE_ROLES = ("admin", "member", "guest")


@dataclass
class WorkspaceMember:
    user_id: str
    role: str = "member"
    joined_at: str = ""
    invited_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "joined_at": self.joined_at,
            "invited_by": self.invited_by,
        }


@dataclass
class Workspace:
    workspace_id: str
    name: str
    owner_id: str
    description: str = ""
    members: List[WorkspaceMember] = field(default_factory=list)
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.workspace_id,
            "name": self.name,
            "description": self.description,
            "owner_id": self.owner_id,
            "members": [m.to_dict() for m in self.members],
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class WorkspaceStore:

    def _conn(self):
        from backend.db.engine import get_conn
        return get_conn()

    @staticmethod
    def _load_members(conn, workspace_id: str) -> List[WorkspaceMember]:
        rows = conn.execute(
            """SELECT user_id, role, joined_at, invited_by FROM workspace_members
               WHERE workspace_id = ? ORDER BY position, joined_at""",
            (workspace_id,),
        ).fetchall()
        return [WorkspaceMember(**dict(r)) for r in rows]

    def _from_row(self, conn, row) -> Workspace:
        d = dict(row)
        return Workspace(
            workspace_id=d["id"],
            name=d["name"],
            owner_id=d["owner_id"],
            description=d.get("description") or "",
            members=self._load_members(conn, d["id"]),
            is_active=bool(d.get("is_active", 1)),
            created_at=d.get("created_at", ""),
            updated_at=d.get("updated_at", ""),
        )

    @staticmethod
    def _insert_member(conn, workspace_id: str, user_id: str, role: str,
                       invited_by: Optional[str], now: str) -> bool:
        row = conn.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 as pos FROM workspace_members WHERE workspace_id = ?",
            (workspace_id,),
        ).fetchone()
        cursor = conn.execute(
            """INSERT OR IGNORE INTO workspace_members
               (workspace_id, user_id, role, position, joined_at, invited_by)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (workspace_id, user_id, role, row["pos"], now, invited_by),
        )
        return cursor.rowcount > 0

    # --- Workspaces ---

    def create_workspace(self, owner_id: str, name: str, description: str = "") -> Workspace:
        wid = new_id()
        now = now_iso()
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO workspaces
                   (id, name, description, owner_id, is_active, created_at, updated_at)
                   VALUES (?, ?, ?, ?, 1, ?, ?)""",
                (wid, name, description, owner_id, now, now),
            )
            # Owner is also listed as an admin member
            self._insert_member(conn, wid, owner_id, "admin", None, now)
        log.info("Workspace created: %s (%s) by %s", name, wid, owner_id)
        return self.get_workspace(wid)

    def get_workspace(self, workspace_id: str, include_inactive: bool = False) -> Optional[Workspace]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM workspaces WHERE id = ?", (workspace_id,)
            ).fetchone()
            if row is None:
                return None
            if not include_inactive and not row["is_active"]:
                return None
            return self._from_row(conn, row)

    def list_for_user(self, user_id: str) -> List[Workspace]:
        """Active workspaces the user owns or is a member of."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT DISTINCT w.* FROM workspaces w
                   LEFT JOIN workspace_members m ON m.workspace_id = w.id
                   WHERE w.is_active = 1 AND (w.owner_id = ? OR m.user_id = ?)
                   ORDER BY w.updated_at DESC""",
                (user_id, user_id),
            ).fetchall()
            return [self._from_row(conn, r) for r in rows]

    def update_workspace(self, workspace_id: str, changes: Dict[str, Any]) -> Optional[Workspace]:
        """Apply ``name``/``description`` from ``changes``; other keys are ignored."""
        updates = {k: v for k, v in changes.items() if k in ("name", "description")}
        if not updates:
            return self.get_workspace(workspace_id)
        updates["updated_at"] = now_iso()
        set_clause = ", ".join(f"{k} = ?" for k in updates)
        values = list(updates.values()) + [workspace_id]
        with self._conn() as conn:
            conn.execute(f"UPDATE workspaces SET {set_clause} WHERE id = ?", values)
        return self.get_workspace(workspace_id)

    def delete_workspace(self, workspace_id: str) -> bool:
        """Soft-delete (set is_active = 0)."""
        with self._conn() as conn:
            cursor = conn.execute(
                "UPDATE workspaces SET is_active = 0, updated_at = ? WHERE id = ? AND is_active = 1",
                (now_iso(), workspace_id),
            )
        if cursor.rowcount:
            log.info("Workspace deactivated: %s", workspace_id)
        return cursor.rowcount > 0

    # --- Members ---

    def add_member(self, workspace_id: str, user_id: str, role: str = "member",
                   invited_by: Optional[str] = None) -> bool:
        """Append a member. Returns False (no-op) if the user is already listed."""
        if role not in WORKSPACE_ROLES:
            raise ValueError(f"Invalid workspace role '{role}'")
        now = now_iso()
        with self._conn() as conn:
            added = self._insert_member(conn, workspace_id, user_id, role, invited_by, now)
            if added:
                conn.execute(
                    "UPDATE workspaces SET updated_at = ? WHERE id = ?", (now, workspace_id)
                )
        if added:
            log.info("Workspace %s: added member %s as %s", workspace_id, user_id, role)
        return added

    def remove_member(self, workspace_id: str, user_id: str) -> bool:
        with self._conn() as conn:
            cursor = conn.execute(
                "DELETE FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
                (workspace_id, user_id),
            )
        if cursor.rowcount:
            log.info("Workspace %s: removed member %s", workspace_id, user_id)
        return cursor.rowcount > 0

    def update_member_role(self, workspace_id: str, user_id: str, new_role: str) -> bool:
        if new_role not in WORKSPACE_ROLES:
            raise ValueError(f"Invalid workspace role '{new_role}'")
        with self._conn() as conn:
            cursor = conn.execute(
                "UPDATE workspace_members SET role = ? WHERE workspace_id = ? AND user_id = ?",
                (new_role, workspace_id, user_id),
            )
            return cursor.rowcount > 0

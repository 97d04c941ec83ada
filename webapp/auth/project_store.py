"""Project management, SQLite-backed.

Projects belong to one workspace and carry their own assignment roster,
independent of the workspace's member list.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from backend.db.engine import new_id, now_iso

log = logging.getLogger("teamhub.projects")

PROJECT_ROLES = ("lead", "member", "observer")
PROJECT_STATUSES = ("planning", "active", "on-hold", "completed", "cancelled")
PRIORITIES = ("low", "medium", "high", "urgent")
UPDATABLE_FIELDS = frozenset({
    "name", "description", "status", "priority", "due_date", "tags", "completion_percentage",
})


def clean_tags(tags: Any) -> List[str]:
    """Trimmed, non-empty, de-duplicated tag strings in their original order."""
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ValueError("Tags must be a list of strings")
    seen: List[str] = []
    for tag in (t.strip() for t in tags):
        if tag and tag not in seen:
            seen.append(tag)
    return seen


@dataclass
class ProjectMember:
    user_id: str
    role: str = "member"
    assigned_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "role": self.role, "assigned_at": self.assigned_at}


@dataclass
class Project:
    project_id: str
    workspace_id: str
    name: str
    created_by: str
    description: str = ""
    assigned_members: List[ProjectMember] = field(default_factory=list)
    status: str = "planning"
    priority: str = "medium"
    due_date: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    completion_percentage: int = 0
    is_archived: bool = False
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.project_id,
            "workspace_id": self.workspace_id,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "assigned_members": [m.to_dict() for m in self.assigned_members],
            "status": self.status,
            "priority": self.priority,
            "due_date": self.due_date,
            "tags": list(self.tags),
            "completion_percentage": self.completion_percentage,
            "is_archived": self.is_archived,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class ProjectStore:

    def _conn(self):
        from backend.db.engine import get_conn
        return get_conn()

    @staticmethod
    def _load_members(conn, project_id: str) -> List[ProjectMember]:
        rows = conn.execute(
            """SELECT user_id, role, assigned_at FROM project_members
               WHERE project_id = ? ORDER BY position, assigned_at""",
            (project_id,),
        ).fetchall()
        return [ProjectMember(**dict(r)) for r in rows]

    def _from_row(self, conn, row) -> Project:
        d = dict(row)
        return Project(
            project_id=d["id"],
            workspace_id=d["workspace_id"],
            name=d["name"],
            created_by=d["created_by"],
            description=d.get("description") or "",
            assigned_members=self._load_members(conn, d["id"]),
            status=d.get("status") or "planning",
            priority=d.get("priority") or "medium",
            due_date=d.get("due_date"),
            tags=json.loads(d.get("tags") or "[]"),
            completion_percentage=d.get("completion_percentage") or 0,
            is_archived=bool(d.get("is_archived", 0)),
            created_at=d.get("created_at", ""),
            updated_at=d.get("updated_at", ""),
        )

    @staticmethod
    def _insert_member(conn, project_id: str, user_id: str, role: str, now: str) -> bool:
        row = conn.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 as pos FROM project_members WHERE project_id = ?",
            (project_id,),
        ).fetchone()
        cursor = conn.execute(
            """INSERT OR IGNORE INTO project_members
               (project_id, user_id, role, position, assigned_at)
               VALUES (?, ?, ?, ?, ?)""",
            (project_id, user_id, role, row["pos"], now),
        )
        return cursor.rowcount > 0

    @staticmethod
    def _check_fields(fields: Dict[str, Any]) -> None:
        if "status" in fields and fields["status"] not in PROJECT_STATUSES:
            raise ValueError(f"Invalid project status '{fields['status']}'")
        if "priority" in fields and fields["priority"] not in PRIORITIES:
            raise ValueError(f"Invalid priority '{fields['priority']}'")
        if "completion_percentage" in fields:
            pct = fields["completion_percentage"]
            if isinstance(pct, bool) or not isinstance(pct, (int, float)) or not 0 <= pct <= 100:
                raise ValueError("Completion percentage must be between 0 and 100")

    # --- Projects ---

    def create_project(
        self,
        workspace_id: str,
        created_by: str,
        name: str,
        description: str = "",
        status: str = "planning",
        priority: str = "medium",
        due_date: Optional[str] = None,
        tags: Optional[List[str]] = None,
        members: Optional[List[Dict[str, str]]] = None,
    ) -> Project:
        """Create a project. The creator is assigned as ``lead`` unless listed in ``members``."""
        self._check_fields({"status": status, "priority": priority})
        tags = clean_tags(tags or [])
        for m in members or []:
            if m.get("role", "member") not in PROJECT_ROLES:
                raise ValueError(f"Invalid project role '{m.get('role')}'")
        pid = new_id()
        now = now_iso()
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO projects
                   (id, workspace_id, name, description, created_by, status, priority,
                    due_date, tags, is_archived, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)""",
                (pid, workspace_id, name, description, created_by, status, priority,
                 due_date, json.dumps(tags, ensure_ascii=False), now, now),
            )
            for m in members or []:
                self._insert_member(conn, pid, m["user_id"], m.get("role", "member"), now)
            self._insert_member(conn, pid, created_by, "lead", now)
        log.info("Project created: %s (%s) in workspace %s", name, pid, workspace_id)
        return self.get_project(pid)

    def get_project(self, project_id: str, include_archived: bool = False) -> Optional[Project]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
            if row is None:
                return None
            if not include_archived and row["is_archived"]:
                return None
            return self._from_row(conn, row)

    def list_for_user(self, user_id: str, workspace_id: Optional[str] = None) -> List[Project]:
        """Non-archived projects the user created or is assigned to."""
        sql = """SELECT DISTINCT p.* FROM projects p
                 LEFT JOIN project_members m ON m.project_id = p.id
                 WHERE p.is_archived = 0 AND (p.created_by = ? OR m.user_id = ?)"""
        params: List[Any] = [user_id, user_id]
        if workspace_id:
            sql += " AND p.workspace_id = ?"
            params.append(workspace_id)
        sql += " ORDER BY p.created_at DESC"
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [self._from_row(conn, r) for r in rows]

    def update_project(self, project_id: str, changes: Dict[str, Any]) -> Optional[Project]:
        """Apply the editable fields found in ``changes``; other keys are ignored.

        Reaching 100% completion marks the project completed; dropping below
        100% moves a completed project back to active.
        """
        updates = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        self._check_fields(updates)
        if not updates:
            return self.get_project(project_id)
        if "tags" in updates:
            updates["tags"] = json.dumps(clean_tags(updates["tags"]), ensure_ascii=False)
        if "completion_percentage" in updates:
            pct = int(round(updates["completion_percentage"]))
            updates["completion_percentage"] = pct
            current = self.get_project(project_id, include_archived=True)
            status = updates.get("status") or (current.status if current else "planning")
            if pct == 100 and status != "completed":
                updates["status"] = "completed"
            elif pct < 100 and status == "completed":
                updates["status"] = "active"
        updates["updated_at"] = now_iso()
        set_clause = ", ".join(f"{k} = ?" for k in updates)
        values = list(updates.values()) + [project_id]
        with self._conn() as conn:
            conn.execute(f"UPDATE projects SET {set_clause} WHERE id = ?", values)
        return self.get_project(project_id)

    def archive_project(self, project_id: str) -> bool:
        """Soft-delete the project and every task under it."""
        now = now_iso()
        with self._conn() as conn:
            cursor = conn.execute(
                "UPDATE projects SET is_archived = 1, updated_at = ? WHERE id = ? AND is_archived = 0",
                (now, project_id),
            )
            if cursor.rowcount == 0:
                return False
            tasks = conn.execute(
                "UPDATE tasks SET is_archived = 1, updated_at = ? WHERE project_id = ? AND is_archived = 0",
                (now, project_id),
            )
        log.info("Project archived: %s (%d tasks)", project_id, tasks.rowcount)
        return True

    # --- Members ---

    def add_member(self, project_id: str, user_id: str, role: str = "member") -> bool:
        """Assign a user. Returns False (no-op) if already assigned."""
        if role not in PROJECT_ROLES:
            raise ValueError(f"Invalid project role '{role}'")
        now = now_iso()
        with self._conn() as conn:
            added = self._insert_member(conn, project_id, user_id, role, now)
            if added:
                conn.execute("UPDATE projects SET updated_at = ? WHERE id = ?", (now, project_id))
        if added:
            log.info("Project %s: assigned %s as %s", project_id, user_id, role)
        return added

    def remove_member(self, project_id: str, user_id: str) -> bool:
        with self._conn() as conn:
            cursor = conn.execute(
                "DELETE FROM project_members WHERE project_id = ? AND user_id = ?",
                (project_id, user_id),
            )
        if cursor.rowcount:
            log.info("Project %s: unassigned %s", project_id, user_id)
        return cursor.rowcount > 0

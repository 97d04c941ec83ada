"""Task management, SQLite-backed.

Tasks embed their assignees, comments and attachment metadata.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from backend.db.engine import new_id, now_iso

from .project_store import clean_tags

log = logging.getLogger("teamhub.tasks")

TASK_STATUSES = ("todo", "in-progress", "review", "completed")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
DEPENDENCY_TYPES = ("blocks", "blocked-by", "related")
COMMENT_MAX_LENGTH = 1000
SUBTASK_TITLE_MAX_LENGTH = 200
UPDATABLE_FIELDS = frozenset({
    "title", "description", "status", "priority", "tags", "start_date", "due_date",
    "estimated_hours", "actual_hours", "subtasks", "dependencies",
})


@dataclass
class TaskAssignment:
    user_id: str
    assigned_at: str = ""
    assigned_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "assigned_at": self.assigned_at, "assigned_by": self.assigned_by}


@dataclass
class Comment:
    comment_id: str
    user_id: str
    content: str
    created_at: str = ""
    updated_at: str = ""
    is_edited: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.comment_id,
            "user_id": self.user_id,
            "content": self.content,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "is_edited": self.is_edited,
        }


@dataclass
class Attachment:
    attachment_id: str
    filename: str
    original_name: str = ""
    path: str = ""
    size: int = 0
    mime_type: str = ""
    uploaded_by: Optional[str] = None
    uploaded_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.attachment_id,
            "filename": self.filename,
            "original_name": self.original_name,
            "size": self.size,
            "mime_type": self.mime_type,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": self.uploaded_at,
        }


@dataclass
class Task:
    task_id: str
    project_id: str
    workspace_id: str
    title: str
    created_by: str
    description: str = ""
    assigned_to: List[TaskAssignment] = field(default_factory=list)
    comments: List[Comment] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    status: str = "todo"
    priority: str = "medium"
    tags: List[str] = field(default_factory=list)
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    completed_at: Optional[str] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    subtasks: List[Dict[str, Any]] = field(default_factory=list)
    dependencies: List[Dict[str, str]] = field(default_factory=list)
    is_archived: bool = False
    created_at: str = ""
    updated_at: str = ""

    def get_comment(self, comment_id: str) -> Optional[Comment]:
        for c in self.comments:
            if c.comment_id == comment_id:
                return c
        return None

    @property
    def subtask_completion_percentage(self) -> int:
        if not self.subtasks:
            return 0
        done = sum(1 for s in self.subtasks if s.get("completed"))
        return round(done * 100 / len(self.subtasks))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.task_id,
            "project_id": self.project_id,
            "workspace_id": self.workspace_id,
            "title": self.title,
            "description": self.description,
            "created_by": self.created_by,
            "assigned_to": [a.to_dict() for a in self.assigned_to],
            "comments": [c.to_dict() for c in self.comments],
            "attachments": [a.to_dict() for a in self.attachments],
            "status": self.status,
            "priority": self.priority,
            "tags": list(self.tags),
            "start_date": self.start_date,
            "due_date": self.due_date,
            "completed_at": self.completed_at,
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "subtasks": [dict(s) for s in self.subtasks],
            "subtask_completion_percentage": self.subtask_completion_percentage,
            "dependencies": [dict(d) for d in self.dependencies],
            "is_archived": self.is_archived,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _check_hours(name: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"{name} must be a non-negative number")
    return float(value)


def _clean_subtasks(items: Any, now: str) -> List[Dict[str, Any]]:
    if not isinstance(items, list):
        raise ValueError("Subtasks must be a list")
    cleaned = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError("Each subtask must be an object")
        title = (item.get("title") or "").strip() if isinstance(item.get("title"), str) else ""
        if not 1 <= len(title) <= SUBTASK_TITLE_MAX_LENGTH:
            raise ValueError(f"Subtask title must be between 1 and {SUBTASK_TITLE_MAX_LENGTH} characters")
        cleaned.append({
            "id": item.get("id") or new_id(),
            "title": title,
            "completed": bool(item.get("completed", False)),
            "created_at": item.get("created_at") or now,
        })
    return cleaned


def _clean_dependencies(items: Any, task_id: Optional[str]) -> List[Dict[str, str]]:
    if not isinstance(items, list):
        raise ValueError("Dependencies must be a list")
    cleaned: List[Dict[str, str]] = []
    for item in items:
        if not isinstance(item, dict) or not item.get("task_id"):
            raise ValueError("Each dependency needs a task_id")
        dep_type = item.get("type") or "related"
        if dep_type not in DEPENDENCY_TYPES:
            raise ValueError(f"Invalid dependency type '{dep_type}'")
        if item["task_id"] == task_id:
            raise ValueError("A task cannot depend on itself")
        entry = {"task_id": str(item["task_id"]), "type": dep_type}
        if entry not in cleaned:
            cleaned.append(entry)
    return cleaned


def check_comment(content: str) -> str:
    """Stripped comment text; raises ValueError when empty or too long."""
    content = (content or "").strip()
    if not content:
        raise ValueError("Comment content is required")
    if len(content) > COMMENT_MAX_LENGTH:
        raise ValueError(f"Comment cannot exceed {COMMENT_MAX_LENGTH} characters")
    return content


class TaskStore:

    def _conn(self):
        from backend.db.engine import get_conn
        return get_conn()

    def _from_row(self, conn, row) -> Task:
        d = dict(row)
        tid = d["id"]
        assignees = conn.execute(
            """SELECT user_id, assigned_at, assigned_by FROM task_assignees
               WHERE task_id = ? ORDER BY position, assigned_at""",
            (tid,),
        ).fetchall()
        comments = conn.execute(
            "SELECT * FROM task_comments WHERE task_id = ? ORDER BY created_at",
            (tid,),
        ).fetchall()
        attachments = conn.execute(
            "SELECT * FROM task_attachments WHERE task_id = ? ORDER BY uploaded_at",
            (tid,),
        ).fetchall()
        return Task(
            task_id=tid,
            project_id=d["project_id"],
            workspace_id=d["workspace_id"],
            title=d["title"],
            created_by=d["created_by"],
            description=d.get("description") or "",
            assigned_to=[TaskAssignment(**dict(a)) for a in assignees],
            comments=[
                Comment(
                    comment_id=c["id"], user_id=c["user_id"], content=c["content"],
                    created_at=c["created_at"], updated_at=c["updated_at"],
                    is_edited=bool(c["is_edited"]),
                )
                for c in comments
            ],
            attachments=[
                Attachment(
                    attachment_id=a["id"], filename=a["filename"], original_name=a["original_name"],
                    path=a["path"], size=a["size"], mime_type=a["mime_type"],
                    uploaded_by=a["uploaded_by"], uploaded_at=a["uploaded_at"],
                )
                for a in attachments
            ],
            status=d.get("status") or "todo",
            priority=d.get("priority") or "medium",
            tags=json.loads(d.get("tags") or "[]"),
            start_date=d.get("start_date"),
            due_date=d.get("due_date"),
            completed_at=d.get("completed_at"),
            estimated_hours=d.get("estimated_hours"),
            actual_hours=d.get("actual_hours"),
            subtasks=json.loads(d.get("subtasks") or "[]"),
            dependencies=json.loads(d.get("dependencies") or "[]"),
            is_archived=bool(d.get("is_archived", 0)),
            created_at=d.get("created_at", ""),
            updated_at=d.get("updated_at", ""),
        )

    @staticmethod
    def _insert_assignees(conn, task_id: str, user_ids: Iterable[str],
                          assigned_by: Optional[str], now: str) -> List[str]:
        row = conn.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 as pos FROM task_assignees WHERE task_id = ?",
            (task_id,),
        ).fetchone()
        pos = row["pos"]
        added = []
        for uid in user_ids:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO task_assignees
                   (task_id, user_id, position, assigned_at, assigned_by)
                   VALUES (?, ?, ?, ?, ?)""",
                (task_id, uid, pos, now, assigned_by),
            )
            if cursor.rowcount:
                added.append(uid)
                pos += 1
        return added

    # --- Tasks ---

    def create_task(
        self,
        project_id: str,
        workspace_id: str,
        created_by: str,
        title: str,
        description: str = "",
        priority: str = "medium",
        due_date: Optional[str] = None,
        assignees: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        start_date: Optional[str] = None,
        estimated_hours: Optional[float] = None,
        subtasks: Optional[List[Dict[str, Any]]] = None,
    ) -> Task:
        if priority not in TASK_PRIORITIES:
            raise ValueError(f"Invalid priority '{priority}'")
        tid = new_id()
        now = now_iso()
        tags = clean_tags(tags or [])
        hours = _check_hours("Estimated hours", estimated_hours)
        subtasks = _clean_subtasks(subtasks or [], now)
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO tasks
                   (id, project_id, workspace_id, title, description, created_by, status,
                    priority, start_date, due_date, tags, estimated_hours, actual_hours,
                    subtasks, is_archived, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, 'todo', ?, ?, ?, ?, ?, NULL, ?, 0, ?, ?)""",
                (tid, project_id, workspace_id, title, description, created_by,
                 priority, start_date or now, due_date, json.dumps(tags, ensure_ascii=False),
                 hours, json.dumps(subtasks, ensure_ascii=False), now, now),
            )
            self._insert_assignees(conn, tid, assignees or [], created_by, now)
        log.info("Task created: %s (%s) in project %s", title, tid, project_id)
        return self.get_task(tid)

    def get_task(self, task_id: str, include_archived: bool = False) -> Optional[Task]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None:
                return None
            if not include_archived and row["is_archived"]:
                return None
            return self._from_row(conn, row)

    def list_for_user(self, user_id: str, project_id: Optional[str] = None,
                      workspace_id: Optional[str] = None, status: Optional[str] = None,
                      priority: Optional[str] = None,
                      assigned_to: Optional[str] = None) -> List[Task]:
        """Non-archived tasks the user created or is assigned to, newest first."""
        sql = """SELECT DISTINCT t.* FROM tasks t
                 LEFT JOIN task_assignees a ON a.task_id = t.id
                 WHERE t.is_archived = 0 AND (t.created_by = ? OR a.user_id = ?)"""
        params: List[Any] = [user_id, user_id]
        for column, value in (("project_id", project_id), ("workspace_id", workspace_id),
                              ("status", status), ("priority", priority)):
            if value:
                sql += f" AND t.{column} = ?"
                params.append(value)
        if assigned_to:
            sql += " AND EXISTS (SELECT 1 FROM task_assignees x WHERE x.task_id = t.id AND x.user_id = ?)"
            params.append(assigned_to)
        sql += " ORDER BY t.created_at DESC"
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [self._from_row(conn, r) for r in rows]

    def list_for_project(self, project_id: str) -> List[Task]:
        """Every non-archived task of a project, newest first."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE project_id = ? AND is_archived = 0 ORDER BY created_at DESC",
                (project_id,),
            ).fetchall()
            return [self._from_row(conn, r) for r in rows]

    def update_task(self, task_id: str, changes: Dict[str, Any]) -> Optional[Task]:
        """Apply the editable fields found in ``changes``; other keys are ignored.

        ``completed_at`` follows transitions into and out of 'completed'.
        """
        updates = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        if "status" in updates and updates["status"] not in TASK_STATUSES:
            raise ValueError(f"Invalid status '{updates['status']}'")
        if "priority" in updates and updates["priority"] not in TASK_PRIORITIES:
            raise ValueError(f"Invalid priority '{updates['priority']}'")
        if "title" in updates:
            updates["title"] = str(updates["title"] or "").strip()
            if not 1 <= len(updates["title"]) <= 200:
                raise ValueError("Task title must be between 1 and 200 characters")
        for key, label in (("estimated_hours", "Estimated hours"), ("actual_hours", "Actual hours")):
            if key in updates:
                updates[key] = _check_hours(label, updates[key])
        now = now_iso()
        if "tags" in updates:
            updates["tags"] = json.dumps(clean_tags(updates["tags"]), ensure_ascii=False)
        if "subtasks" in updates:
            updates["subtasks"] = json.dumps(_clean_subtasks(updates["subtasks"], now), ensure_ascii=False)
        if "dependencies" in updates:
            updates["dependencies"] = json.dumps(_clean_dependencies(updates["dependencies"], task_id))
        if not updates:
            return self.get_task(task_id)
        with self._conn() as conn:
            row = conn.execute(
                "SELECT status, completed_at FROM tasks WHERE id = ?", (task_id,)
            ).fetchone()
            if row is None:
                return None
            if "status" in updates:
                if updates["status"] == "completed" and not row["completed_at"]:
                    updates["completed_at"] = now
                elif updates["status"] != "completed" and row["completed_at"]:
                    updates["completed_at"] = None
            updates["updated_at"] = now
            set_clause = ", ".join(f"{k} = ?" for k in updates)
            values = list(updates.values()) + [task_id]
            conn.execute(f"UPDATE tasks SET {set_clause} WHERE id = ?", values)
        return self.get_task(task_id)

    def archive_task(self, task_id: str) -> bool:
        with self._conn() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET is_archived = 1, updated_at = ? WHERE id = ? AND is_archived = 0",
                (now_iso(), task_id),
            )
            return cursor.rowcount > 0

    # --- Assignees ---

    def add_assignees(self, task_id: str, user_ids: Iterable[str],
                      assigned_by: Optional[str] = None) -> List[str]:
        """Assign users; returns only the ids that were not already assigned."""
        now = now_iso()
        with self._conn() as conn:
            added = self._insert_assignees(conn, task_id, user_ids, assigned_by, now)
            if added:
                conn.execute("UPDATE tasks SET updated_at = ? WHERE id = ?", (now, task_id))
        if added:
            log.info("Task %s: assigned %s", task_id, ", ".join(added))
        return added

    def remove_user_from_project_tasks(self, project_id: str, user_id: str) -> int:
        """Unassign a user from every task of a project. Returns count."""
        with self._conn() as conn:
            cursor = conn.execute(
                """DELETE FROM task_assignees WHERE user_id = ?
                   AND task_id IN (SELECT id FROM tasks WHERE project_id = ?)""",
                (user_id, project_id),
            )
        if cursor.rowcount:
            log.info("Unassigned %s from %d tasks of project %s", user_id, cursor.rowcount, project_id)
        return cursor.rowcount

    # --- Comments ---

    def add_comment(self, task_id: str, user_id: str, content: str) -> Comment:
        content = check_comment(content)
        cid = new_id()
        now = now_iso()
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO task_comments (id, task_id, user_id, content, created_at, updated_at, is_edited)
                   VALUES (?, ?, ?, ?, ?, ?, 0)""",
                (cid, task_id, user_id, content, now, now),
            )
            conn.execute("UPDATE tasks SET updated_at = ? WHERE id = ?", (now, task_id))
        return Comment(comment_id=cid, user_id=user_id, content=content,
                       created_at=now, updated_at=now, is_edited=False)

    def update_comment(self, task_id: str, comment_id: str, content: str) -> bool:
        content = check_comment(content)
        with self._conn() as conn:
            cursor = conn.execute(
                """UPDATE task_comments SET content = ?, updated_at = ?, is_edited = 1
                   WHERE id = ? AND task_id = ?""",
                (content, now_iso(), comment_id, task_id),
            )
            return cursor.rowcount > 0

    def delete_comment(self, task_id: str, comment_id: str) -> bool:
        with self._conn() as conn:
            cursor = conn.execute(
                "DELETE FROM task_comments WHERE id = ? AND task_id = ?",
                (comment_id, task_id),
            )
            return cursor.rowcount > 0

    # --- Attachments (metadata only) ---

    def add_attachment(self, task_id: str, filename: str, original_name: str = "",
                       path: str = "", size: int = 0, mime_type: str = "",
                       uploaded_by: Optional[str] = None) -> Attachment:
        aid = new_id()
        now = now_iso()
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO task_attachments
                   (id, task_id, filename, original_name, path, size, mime_type, uploaded_by, uploaded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (aid, task_id, filename, original_name, path, size, mime_type, uploaded_by, now),
            )
        return Attachment(aid, filename, original_name, path, size, mime_type, uploaded_by, now)

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from backend.db.engine import new_id, now_iso

from .passwords import normalize_email

log = logging.getLogger("teamhub.auth.users")

GLOBAL_ROLES = ("admin", "member", "guest")


@dataclass
class UserRecord:
    user_id: str = ""
    email: str = ""
    name: str = ""
    password_hash: str = ""
    role: str = "member"                # global role: admin | member | guest
    is_active: bool = True
    created_at: str = ""
    last_login: Optional[str] = None

    def public(self) -> Dict[str, Any]:
        """User fields safe to return to clients."""
        return {
            "id": self.user_id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "created_at": self.created_at,
            "last_login": self.last_login,
        }


class UserStore:
    """SQLite-backed user storage. Email is unique (case-insensitive)."""

    def _conn(self):
        from backend.db.engine import get_conn
        return get_conn()

    def _record_from_row(self, row: Dict[str, Any]) -> UserRecord:
        return UserRecord(
            user_id=row.get("id", ""),
            email=row.get("email", ""),
            name=row.get("name", ""),
            password_hash=row.get("password_hash", ""),
            role=row.get("role") or "member",
            is_active=bool(row.get("is_active", 1)),
            created_at=row.get("created_at", ""),
            last_login=row.get("last_login"),
        )

    # ---- CRUD ----

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                return None
            return self._record_from_row(dict(row))

    def get_by_email(self, email: str) -> Optional[UserRecord]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
            if row is None:
                return None
            return self._record_from_row(dict(row))

    def create_user(self, rec: UserRecord) -> UserRecord:
        if not rec.user_id:
            rec.user_id = new_id()
        if not rec.created_at:
            rec.created_at = now_iso()
        rec.email = normalize_email(rec.email)
        if rec.role not in GLOBAL_ROLES:
            raise ValueError(f"Invalid role '{rec.role}'")

        with self._conn() as conn:
            existing = conn.execute(
                "SELECT id FROM users WHERE email = ?", (rec.email,)
            ).fetchone()
            if existing:
                raise ValueError("User with this email already exists")

            conn.execute(
                """INSERT INTO users
                   (id, email, name, password_hash, role, is_active, created_at, last_login)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (rec.user_id, rec.email, rec.name, rec.password_hash, rec.role,
                 int(rec.is_active), rec.created_at, rec.last_login),
            )
        log.info("User created: %s (%s)", rec.email, rec.user_id)
        return rec

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> Optional[UserRecord]:
        allowed = {"name", "password_hash", "role", "is_active", "last_login"}
        sql_updates = {}
        for key, value in updates.items():
            if key not in allowed:
                continue
            if key == "role" and value not in GLOBAL_ROLES:
                raise ValueError(f"Invalid role '{value}'")
            sql_updates[key] = int(bool(value)) if key == "is_active" else value

        with self._conn() as conn:
            if sql_updates:
                set_clause = ", ".join(f"{k} = ?" for k in sql_updates)
                values = list(sql_updates.values()) + [user_id]
                conn.execute(f"UPDATE users SET {set_clause} WHERE id = ?", values)
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return self._record_from_row(dict(row)) if row else None



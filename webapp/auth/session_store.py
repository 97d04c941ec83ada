from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from backend.db.engine import to_iso

from .passwords import generate_token

log = logging.getLogger("teamhub.auth.sessions")

ACCESS = "access"
REFRESH = "refresh"


class SessionStore:
    """SQLite-backed bearer tokens.

    Access tokens authenticate requests; refresh tokens are the user's set of
    active sessions, each independently revocable.
    """

    def __init__(self, access_hours: int = 8, refresh_days: int = 30) -> None:
        self._access_ttl = timedelta(hours=access_hours)
        self._refresh_ttl = timedelta(days=refresh_days)

    def _conn(self):
        from backend.db.engine import get_conn
        return get_conn()

    def _insert(self, user_id: str, kind: str, ttl: timedelta) -> str:
        token = generate_token()
        now = datetime.now()
        with self._conn() as conn:
            conn.execute(
                "INSERT INTO auth_sessions (token, user_id, kind, created_at, expires_at) VALUES (?, ?, ?, ?, ?)",
                (token, user_id, kind, to_iso(now), to_iso(now + ttl)),
            )
        return token

    def create_session(self, user_id: str) -> Tuple[str, str]:
        """Issue a fresh (access_token, refresh_token) pair."""
        return (
            self._insert(user_id, ACCESS, self._access_ttl),
            self._insert(user_id, REFRESH, self._refresh_ttl),
        )

    def get_session(self, token: str, kind: str = ACCESS) -> Optional[Dict[str, Any]]:
        """Look up a token of the given kind. Returns None if not found or expired."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM auth_sessions WHERE token = ? AND kind = ?", (token, kind)
            ).fetchone()

        if row is None:
            return None

        session = dict(row)
        try:
            expires = datetime.fromisoformat(session["expires_at"])
        except (KeyError, ValueError):
            return None
        if datetime.now() > expires:
            self.delete_session(token)
            return None
        return session

    def rotate_refresh(self, refresh_token: str) -> Optional[Tuple[str, str, str]]:
        """Exchange a refresh token for a new pair; the old one is revoked.

        Returns (user_id, access_token, refresh_token) or None when the token
        is unknown, expired or already rotated.
        """
        session = self.get_session(refresh_token, kind=REFRESH)
        if session is None:
            return None
        if not self.delete_session(refresh_token):
            # Lost a race with a concurrent rotation
            return None
        access, refresh = self.create_session(session["user_id"])
        return session["user_id"], access, refresh

    def delete_session(self, token: str) -> bool:
        """Remove a single token."""
        with self._conn() as conn:
            cursor = conn.execute("DELETE FROM auth_sessions WHERE token = ?", (token,))
            return cursor.rowcount > 0

    def revoke_refresh(self, user_id: str, refresh_token: str) -> bool:
        """Revoke one refresh token belonging to ``user_id``."""
        with self._conn() as conn:
            cursor = conn.execute(
                "DELETE FROM auth_sessions WHERE token = ? AND user_id = ? AND kind = ?",
                (refresh_token, user_id, REFRESH),
            )
            return cursor.rowcount > 0

    def delete_user_sessions(self, user_id: str) -> int:
        """Remove every token of a user. Returns count."""
        with self._conn() as conn:
            cursor = conn.execute("DELETE FROM auth_sessions WHERE user_id = ?", (user_id,))
            return cursor.rowcount

    def cleanup_expired(self) -> int:
        """Remove all expired tokens. Returns count."""
        now = to_iso(datetime.now())
        with self._conn() as conn:
            cursor = conn.execute(
                "DELETE FROM auth_sessions WHERE expires_at < ?", (now,)
            )
        if cursor.rowcount:
            log.info("Removed %d expired session tokens", cursor.rowcount)
        return cursor.rowcount

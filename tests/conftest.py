"""Shared pytest fixtures for TeamHub tests."""

from __future__ import annotations

import os
import sys
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List

import pytest

# Ensure the project root is importable
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

# Override data/config directories so tests don't touch real data.
os.environ["TEAMHUB_DATA_DIR"] = tempfile.mkdtemp(prefix="teamhub_test_data_")
os.environ["TEAMHUB_CONFIG_DIR"] = tempfile.mkdtemp(prefix="teamhub_test_cfg_")


class MemoryTransport:
    """Collects outgoing mail instead of sending it."""

    def __init__(self) -> None:
        self.sent: List = []

    def deliver(self, mail) -> None:
        self.sent.append(mail)

    def kinds(self) -> List[str]:
        return [m.kind for m in self.sent]

    def to(self, email: str) -> List:
        return [m for m in self.sent if m.to == email]


class Clock:
    """Settable clock for expiry tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def db(tmp_path: Path) -> Path:
    """Fresh SQLite database per test."""
    from backend.db.engine import init_db, set_db_path
    db_path = tmp_path / "teamhub_test.db"
    set_db_path(db_path)
    init_db(db_path)
    return db_path


@pytest.fixture
def users(db):
    from webapp.auth.user_store import UserStore
    return UserStore()


@pytest.fixture
def workspaces(db):
    from webapp.auth.workspace_store import WorkspaceStore
    return WorkspaceStore()


@pytest.fixture
def projects(db):
    from webapp.auth.project_store import ProjectStore
    return ProjectStore()


@pytest.fixture
def tasks(db):
    from webapp.auth.task_store import TaskStore
    return TaskStore()


@pytest.fixture
def invitations(db):
    from webapp.auth.invitation_store import InvitationStore
    return InvitationStore()


@pytest.fixture
def mailbox() -> MemoryTransport:
    return MemoryTransport()


@pytest.fixture
def notifier(mailbox):
    from webapp.notifications import NotificationDispatcher
    return NotificationDispatcher(transport=mailbox, client_url="http://app.test", background=False)


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime.now())


@pytest.fixture
def workflow(users, workspaces, projects, invitations, notifier, clock):
    from webapp.auth.invitations import InvitationWorkflow
    return InvitationWorkflow(users, workspaces, projects, invitations,
                              notifier=notifier, ttl_days=7, clock=clock)


@pytest.fixture
def make_user(users):
    """Factory: make_user("alice") -> UserRecord with email alice@x.com."""
    from webapp.auth.passwords import hash_password
    from webapp.auth.user_store import UserRecord

    def _make(name: str, role: str = "member", password: str = "secret123"):
        return users.create_user(UserRecord(
            email=f"{name}@x.com",
            name=name.capitalize(),
            password_hash=hash_password(password),
            role=role,
        ))
    return _make

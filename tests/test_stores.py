"""Tests for the SQLite-backed stores: users, sessions, workspaces, projects,
tasks and invitation records.
"""
from __future__ import annotations

from datetime import datetime, timedelta

import pytest


# ===========================================================================
# Users & passwords
# ===========================================================================

class TestPasswords:
    def test_hash_and_verify(self):
        from webapp.auth.passwords import hash_password, verify_password
        h = hash_password("secret123")
        assert h.startswith("pbkdf2:")
        assert verify_password("secret123", h)
        assert not verify_password("wrong", h)

    def test_verify_rejects_garbage(self):
        from webapp.auth.passwords import verify_password
        assert not verify_password("x", "")
        assert not verify_password("x", "md5:abc")
        assert not verify_password("x", "pbkdf2:notanint:zz:zz")

    def test_invitation_token_shape(self):
        from webapp.auth.passwords import generate_invitation_token
        tok = generate_invitation_token()
        assert len(tok) == 64
        int(tok, 16)
        assert tok != generate_invitation_token()

    @pytest.mark.parametrize("name,email,password,expected", [
        ("A", "a@x.com", "secret1", "Name must be between 2 and 50 characters"),
        ("Al", "not-an-email", "secret1", "Please provide a valid email"),
        ("Al", "a@x.com", "12345", "Password must be at least 6 characters long"),
        ("Al", "a@x.com", "123456", None),
    ])
    def test_validate_registration(self, name, email, password, expected):
        from webapp.auth.passwords import validate_registration
        assert validate_registration(name, email, password) == expected


class TestUserStore:
    def test_create_and_lookup(self, users, make_user):
        u = make_user("alice")
        assert users.get_user(u.user_id).email == "alice@x.com"
        assert users.get_by_email("  ALICE@x.com ").user_id == u.user_id

    def test_duplicate_email_rejected(self, users, make_user):
        from webapp.auth.user_store import UserRecord
        make_user("alice")
        with pytest.raises(ValueError, match="already exists"):
            users.create_user(UserRecord(email="Alice@X.com", name="Other"))

    def test_invalid_role_rejected(self, users):
        from webapp.auth.user_store import UserRecord
        with pytest.raises(ValueError):
            users.create_user(UserRecord(email="z@x.com", name="Zed", role="superuser"))

    def test_update_user(self, users, make_user):
        u = make_user("alice")
        updated = users.update_user(u.user_id, {"name": "Alicia", "is_active": False, "email": "ignored@x.com"})
        assert updated.name == "Alicia"
        assert updated.is_active is False
        assert updated.email == "alice@x.com"

    def test_public_view_hides_password(self, make_user):
        data = make_user("alice").public()
        assert "password_hash" not in data
        assert data["email"] == "alice@x.com"


def _session_count(user_id, kind=None):
    from backend.db.engine import get_conn
    sql = "SELECT COUNT(*) AS cnt FROM auth_sessions WHERE user_id = ?"
    params = [user_id]
    if kind:
        sql += " AND kind = ?"
        params.append(kind)
    with get_conn() as conn:
        return conn.execute(sql, params).fetchone()["cnt"]


class TestSessionStore:
    def test_create_and_get(self, make_user):
        from webapp.auth.session_store import REFRESH, SessionStore
        u = make_user("alice")
        store = SessionStore()
        access, refresh = store.create_session(u.user_id)
        assert store.get_session(access)["user_id"] == u.user_id
        # Tokens are not interchangeable between kinds
        assert store.get_session(refresh) is None
        assert store.get_session(refresh, kind=REFRESH)["user_id"] == u.user_id

    def test_expired_access_token(self, make_user):
        from webapp.auth.session_store import SessionStore
        u = make_user("alice")
        store = SessionStore(access_hours=0)
        access, _ = store.create_session(u.user_id)
        assert store.get_session(access) is None

    def test_rotate_refresh_revokes_old(self, make_user):
        from webapp.auth.session_store import REFRESH, SessionStore
        u = make_user("alice")
        store = SessionStore()
        _, refresh = store.create_session(u.user_id)
        user_id, access2, refresh2 = store.rotate_refresh(refresh)
        assert user_id == u.user_id
        assert refresh2 != refresh
        assert store.rotate_refresh(refresh) is None
        assert store.get_session(refresh2, kind=REFRESH) is not None

    def test_refresh_tokens_independently_revocable(self, make_user):
        from webapp.auth.session_store import REFRESH, SessionStore
        u = make_user("alice")
        store = SessionStore()
        _, r1 = store.create_session(u.user_id)
        _, r2 = store.create_session(u.user_id)
        assert _session_count(u.user_id, REFRESH) == 2
        assert store.revoke_refresh(u.user_id, r1)
        assert store.get_session(r1, kind=REFRESH) is None
        assert store.get_session(r2, kind=REFRESH) is not None

    def test_revoke_refresh_requires_owner(self, make_user):
        from webapp.auth.session_store import SessionStore
        a, b = make_user("alice"), make_user("bob")
        store = SessionStore()
        _, refresh = store.create_session(a.user_id)
        assert not store.revoke_refresh(b.user_id, refresh)

    def test_delete_user_sessions(self, make_user):
        from webapp.auth.session_store import SessionStore
        u = make_user("alice")
        store = SessionStore()
        store.create_session(u.user_id)
        store.create_session(u.user_id)
        assert store.delete_user_sessions(u.user_id) == 4
        assert _session_count(u.user_id) == 0

    def test_cleanup_expired(self, make_user):
        from webapp.auth.session_store import SessionStore
        u = make_user("alice")
        SessionStore(access_hours=0, refresh_days=0).create_session(u.user_id)
        SessionStore().create_session(u.user_id)
        assert SessionStore().cleanup_expired() == 2
        assert _session_count(u.user_id) == 2


# ===========================================================================
# Workspaces
# ===========================================================================

class TestWorkspaceStore:
    def test_create_adds_owner_as_admin(self, workspaces, make_user):
        o = make_user("owner")
        ws = workspaces.create_workspace(o.user_id, "Team", description="desc")
        assert ws.owner_id == o.user_id
        assert [(m.user_id, m.role) for m in ws.members] == [(o.user_id, "admin")]
        assert ws.to_dict()["id"] == ws.workspace_id

    def test_add_member_is_idempotent(self, workspaces, make_user):
        o, a = make_user("owner"), make_user("alice")
        ws = workspaces.create_workspace(o.user_id, "Team")
        assert workspaces.add_member(ws.workspace_id, a.user_id, "member", o.user_id) is True
        assert workspaces.add_member(ws.workspace_id, a.user_id, "admin") is False
        ws = workspaces.get_workspace(ws.workspace_id)
        assert [m.user_id for m in ws.members].count(a.user_id) == 1
        assert ws.members[1].role == "member"
        assert ws.members[1].invited_by == o.user_id

    def test_add_member_invalid_role(self, workspaces, make_user):
        o, a = make_user("owner"), make_user("alice")
        ws = workspaces.create_workspace(o.user_id, "Team")
        with pytest.raises(ValueError):
            workspaces.add_member(ws.workspace_id, a.user_id, "lead")

    def test_members_keep_join_order(self, workspaces, make_user):
        o = make_user("owner")
        others = [make_user(n) for n in ("bob", "carol", "dave")]
        ws = workspaces.create_workspace(o.user_id, "Team")
        for u in others:
            workspaces.add_member(ws.workspace_id, u.user_id)
        ws = workspaces.get_workspace(ws.workspace_id)
        assert [m.user_id for m in ws.members] == [o.user_id] + [u.user_id for u in others]

    def test_remove_and_update_member(self, workspaces, make_user):
        o, a = make_user("owner"), make_user("alice")
        ws = workspaces.create_workspace(o.user_id, "Team")
        workspaces.add_member(ws.workspace_id, a.user_id)
        assert workspaces.update_member_role(ws.workspace_id, a.user_id, "guest")
        assert workspaces.get_workspace(ws.workspace_id).members[1].role == "guest"
        assert workspaces.remove_member(ws.workspace_id, a.user_id)
        assert not workspaces.remove_member(ws.workspace_id, a.user_id)

    def test_list_for_user(self, workspaces, make_user):
        o, a, b = make_user("owner"), make_user("alice"), make_user("bob")
        ws1 = workspaces.create_workspace(o.user_id, "One")
        workspaces.create_workspace(o.user_id, "Two")
        workspaces.add_member(ws1.workspace_id, a.user_id)
        assert {w.name for w in workspaces.list_for_user(o.user_id)} == {"One", "Two"}
        assert [w.name for w in workspaces.list_for_user(a.user_id)] == ["One"]
        assert workspaces.list_for_user(b.user_id) == []

    def test_soft_delete(self, workspaces, make_user):
        o = make_user("owner")
        ws = workspaces.create_workspace(o.user_id, "Team")
        assert workspaces.delete_workspace(ws.workspace_id)
        assert workspaces.get_workspace(ws.workspace_id) is None
        assert workspaces.get_workspace(ws.workspace_id, include_inactive=True) is not None
        assert workspaces.list_for_user(o.user_id) == []

    def test_update_workspace_ignores_unknown_fields(self, workspaces, make_user):
        o, a = make_user("owner"), make_user("alice")
        ws = workspaces.create_workspace(o.user_id, "Team")
        ws = workspaces.update_workspace(ws.workspace_id, {"name": "Renamed", "owner_id": a.user_id})
        assert ws.name == "Renamed"
        assert ws.owner_id == o.user_id


# ===========================================================================
# Projects
# ===========================================================================

@pytest.fixture
def team(workspaces, make_user):
    owner = make_user("owner")
    ws = workspaces.create_workspace(owner.user_id, "Team")
    return owner, ws


class TestProjectStore:
    def test_creator_is_lead(self, projects, team):
        owner, ws = team
        p = projects.create_project(ws.workspace_id, owner.user_id, "Launch")
        assert [(m.user_id, m.role) for m in p.assigned_members] == [(owner.user_id, "lead")]
        assert p.status == "planning"

    def test_creator_listed_in_members_keeps_role(self, projects, team):
        owner, ws = team
        p = projects.create_project(ws.workspace_id, owner.user_id, "Launch",
                                    members=[{"user_id": owner.user_id, "role": "member"}])
        assert [(m.user_id, m.role) for m in p.assigned_members] == [(owner.user_id, "member")]

    def test_invalid_status(self, projects, team):
        owner, ws = team
        with pytest.raises(ValueError):
            projects.create_project(ws.workspace_id, owner.user_id, "Launch", status="done")

    def test_add_remove_member(self, projects, team, make_user):
        owner, ws = team
        a = make_user("alice")
        p = projects.create_project(ws.workspace_id, owner.user_id, "Launch")
        assert projects.add_member(p.project_id, a.user_id, "observer")
        assert not projects.add_member(p.project_id, a.user_id, "lead")
        p = projects.get_project(p.project_id)
        assert ("observer" in [m.role for m in p.assigned_members if m.user_id == a.user_id])
        assert projects.remove_member(p.project_id, a.user_id)

    def test_list_for_user(self, projects, team, make_user):
        owner, ws = team
        a = make_user("alice")
        p1 = projects.create_project(ws.workspace_id, owner.user_id, "One")
        projects.create_project(ws.workspace_id, owner.user_id, "Two")
        projects.add_member(p1.project_id, a.user_id)
        assert [p.name for p in projects.list_for_user(a.user_id)] == ["One"]
        assert len(projects.list_for_user(owner.user_id, ws.workspace_id)) == 2

    def test_archive_cascades_to_tasks(self, projects, tasks, team):
        owner, ws = team
        p = projects.create_project(ws.workspace_id, owner.user_id, "Launch")
        t = tasks.create_task(p.project_id, ws.workspace_id, owner.user_id, "Write docs")
        assert projects.archive_project(p.project_id)
        assert projects.get_project(p.project_id) is None
        assert tasks.get_task(t.task_id) is None
        assert tasks.get_task(t.task_id, include_archived=True).is_archived
        assert not projects.archive_project(p.project_id)

    def test_tags_are_cleaned(self, projects, team):
        owner, ws = team
        p = projects.create_project(ws.workspace_id, owner.user_id, "Launch", tags=["a", " a ", "", "b"])
        assert p.tags == ["a", "b"]
        with pytest.raises(ValueError):
            projects.update_project(p.project_id, {"tags": "a,b"})

    def test_completion_drives_status(self, projects, team):
        owner, ws = team
        p = projects.create_project(ws.workspace_id, owner.user_id, "Launch")
        p = projects.update_project(p.project_id, {"completion_percentage": 99.6})
        assert (p.completion_percentage, p.status) == (100, "completed")
        p = projects.update_project(p.project_id, {"completion_percentage": 10})
        assert p.status == "active"
        p = projects.update_project(p.project_id, {"completion_percentage": 20, "status": "on-hold"})
        assert p.status == "on-hold"
        for bad in (-1, 101, True, "50"):
            with pytest.raises(ValueError):
                projects.update_project(p.project_id, {"completion_percentage": bad})


# ===========================================================================
# Tasks
# ===========================================================================

@pytest.fixture
def project(projects, team):
    owner, ws = team
    return projects.create_project(ws.workspace_id, owner.user_id, "Launch")


class TestTaskStore:
    def test_create_with_assignees(self, tasks, project, make_user):
        a, b = make_user("alice"), make_user("bob")
        t = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Ship",
                              assignees=[a.user_id, b.user_id, a.user_id])
        assert [x.user_id for x in t.assigned_to] == [a.user_id, b.user_id]

    def test_add_assignees_returns_only_new(self, tasks, project, make_user):
        a, b = make_user("alice"), make_user("bob")
        t = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Ship",
                              assignees=[a.user_id])
        assert tasks.add_assignees(t.task_id, [a.user_id, b.user_id], assigned_by=a.user_id) == [b.user_id]
        assert tasks.add_assignees(t.task_id, [b.user_id]) == []

    def test_completed_at_follows_status(self, tasks, project, make_user):
        a = make_user("alice")
        t = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Ship")
        t = tasks.update_task(t.task_id, {"status": "completed"})
        assert t.completed_at
        t = tasks.update_task(t.task_id, {"status": "in-progress"})
        assert t.completed_at is None
        with pytest.raises(ValueError):
            tasks.update_task(t.task_id, {"status": "blocked"})

    def test_comments(self, tasks, project, make_user):
        a = make_user("alice")
        t = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Ship")
        c = tasks.add_comment(t.task_id, a.user_id, "first")
        assert tasks.update_comment(t.task_id, c.comment_id, "edited")
        stored = tasks.get_task(t.task_id).get_comment(c.comment_id)
        assert stored.content == "edited"
        assert stored.is_edited
        assert tasks.delete_comment(t.task_id, c.comment_id)
        assert tasks.get_task(t.task_id).get_comment(c.comment_id) is None

    def test_remove_user_from_project_tasks(self, tasks, project, make_user):
        a, b = make_user("alice"), make_user("bob")
        t1 = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "One", assignees=[b.user_id])
        t2 = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Two", assignees=[a.user_id, b.user_id])
        assert tasks.remove_user_from_project_tasks(project.project_id, b.user_id) == 2
        assert tasks.get_task(t1.task_id).assigned_to == []
        assert [x.user_id for x in tasks.get_task(t2.task_id).assigned_to] == [a.user_id]

    def test_list_for_user(self, tasks, project, make_user):
        a, b = make_user("alice"), make_user("bob")
        tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Mine")
        tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Shared", assignees=[b.user_id])
        assert [t.title for t in tasks.list_for_user(b.user_id)] == ["Shared"]
        assert len(tasks.list_for_user(a.user_id, project_id=project.project_id)) == 2

    def test_attachment_metadata(self, tasks, project, make_user):
        a = make_user("alice")
        t = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Ship")
        tasks.add_attachment(t.task_id, "f1.pdf", original_name="Spec.pdf", size=10, uploaded_by=a.user_id)
        att = tasks.get_task(t.task_id).attachments
        assert [x.original_name for x in att] == ["Spec.pdf"]

    def test_list_for_project_skips_archived(self, tasks, project, make_user):
        a = make_user("alice")
        tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Kept")
        gone = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Gone")
        tasks.archive_task(gone.task_id)
        assert [t.title for t in tasks.list_for_project(project.project_id)] == ["Kept"]

    def test_list_for_user_filters(self, tasks, project, make_user):
        a, b = make_user("alice"), make_user("bob")
        tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Hot", priority="urgent",
                          assignees=[b.user_id])
        tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Cold", priority="low")
        assert [t.title for t in tasks.list_for_user(a.user_id, priority="urgent")] == ["Hot"]
        assert [t.title for t in tasks.list_for_user(a.user_id, assigned_to=b.user_id)] == ["Hot"]
        assert tasks.list_for_user(a.user_id, priority="low", assigned_to=b.user_id) == []

    def test_hours_must_be_non_negative(self, tasks, project, make_user):
        a = make_user("alice")
        t = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Ship", estimated_hours=2)
        assert t.estimated_hours == 2.0
        assert t.actual_hours is None
        t = tasks.update_task(t.task_id, {"actual_hours": 0})
        assert t.actual_hours == 0.0
        with pytest.raises(ValueError):
            tasks.update_task(t.task_id, {"actual_hours": -0.5})
        with pytest.raises(ValueError):
            tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Bad", estimated_hours=-1)

    def test_subtasks(self, tasks, project, make_user):
        a = make_user("alice")
        t = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Ship",
                              subtasks=[{"title": " build "}, {"title": "tag", "completed": True},
                                        {"title": "push"}, {"title": "announce"}])
        assert [s["title"] for s in t.subtasks] == ["build", "tag", "push", "announce"]
        assert all(s["id"] and s["created_at"] for s in t.subtasks)
        assert t.subtask_completion_percentage == 25
        with pytest.raises(ValueError):
            tasks.update_task(t.task_id, {"subtasks": [{"title": "x" * 201}]})

    def test_dependencies(self, tasks, project, make_user):
        a = make_user("alice")
        t1 = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "One")
        t2 = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Two")
        t2 = tasks.update_task(t2.task_id, {"dependencies": [
            {"task_id": t1.task_id, "type": "blocked-by"},
            {"task_id": t1.task_id, "type": "blocked-by"},
        ]})
        assert t2.dependencies == [{"task_id": t1.task_id, "type": "blocked-by"}]
        for bad in ([{"task_id": t2.task_id}], [{"task_id": t1.task_id, "type": "needs"}], [{}]):
            with pytest.raises(ValueError):
                tasks.update_task(t2.task_id, {"dependencies": bad})

    def test_update_ignores_unknown_fields(self, tasks, project, make_user):
        a = make_user("alice")
        t = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Ship")
        t = tasks.update_task(t.task_id, {"task_id": "x", "project_id": "y", "title": "  Shipped  "})
        assert t.title == "Shipped"
        assert t.project_id == project.project_id

    @pytest.mark.parametrize("content", ["", "   ", "x" * 1001])
    def test_comment_content_checked(self, tasks, project, make_user, content):
        a = make_user("alice")
        t = tasks.create_task(project.project_id, project.workspace_id, a.user_id, "Ship")
        with pytest.raises(ValueError):
            tasks.add_comment(t.task_id, a.user_id, content)
        c = tasks.add_comment(t.task_id, a.user_id, " ok ")
        assert c.content == "ok"
        with pytest.raises(ValueError):
            tasks.update_comment(t.task_id, c.comment_id, content)


# ===========================================================================
# Invitation records
# ===========================================================================

class TestInvitationStore:
    def _create(self, invitations, ws, owner, token="tok", expires_in=timedelta(days=7), **kw):
        return invitations.create_invitation(
            email=kw.pop("email", "New@X.com"), role="member", inv_type=kw.pop("inv_type", "workspace"),
            workspace_id=ws.workspace_id, invited_by=owner.user_id, token=token,
            expires_at=datetime.now() + expires_in, **kw,
        )

    def test_create_normalizes_email(self, invitations, team):
        owner, ws = team
        inv = self._create(invitations, ws, owner)
        assert inv.email == "new@x.com"
        assert inv.status == "pending"
        assert "token" not in inv.summary()

    def test_project_id_must_match_type(self, invitations, team):
        owner, ws = team
        with pytest.raises(ValueError):
            self._create(invitations, ws, owner, inv_type="project")

    def test_find_valid_respects_expiry(self, invitations, team):
        owner, ws = team
        self._create(invitations, ws, owner, token="old", expires_in=timedelta(seconds=-1))
        self._create(invitations, ws, owner, token="fresh", email="other@x.com")
        assert invitations.find_valid("old") is None
        assert invitations.get_by_token("old").status == "pending"
        assert invitations.find_valid("fresh").email == "other@x.com"

    def test_find_pending_scoped(self, invitations, team):
        owner, ws = team
        self._create(invitations, ws, owner)
        assert invitations.find_pending("new@x.com", ws.workspace_id, "workspace") is not None
        assert invitations.find_pending("new@x.com", ws.workspace_id, "project") is None

    def test_mark_accepted_is_compare_and_swap(self, invitations, team):
        owner, ws = team
        self._create(invitations, ws, owner)
        assert invitations.mark_accepted("tok") is True
        assert invitations.mark_accepted("tok") is False
        inv = invitations.get_by_token("tok")
        assert inv.status == "accepted"
        assert inv.accepted_at

    def test_release_claim(self, invitations, team):
        owner, ws = team
        self._create(invitations, ws, owner)
        invitations.mark_accepted("tok")
        assert invitations.release_claim("tok")
        assert invitations.find_valid("tok") is not None

    def test_expire_stale(self, invitations, team):
        owner, ws = team
        self._create(invitations, ws, owner, token="old", expires_in=timedelta(seconds=-1))
        self._create(invitations, ws, owner, token="fresh", email="other@x.com")
        assert invitations.expire_stale() == 1
        assert invitations.get_by_token("old").status == "expired"
        assert [i.email for i in invitations.list_for_workspace(ws.workspace_id, "pending")] == ["other@x.com"]

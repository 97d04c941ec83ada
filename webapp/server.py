from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from backend.db.engine import init_db
from backend.settings import APP_NAME, APP_VERSION, Settings
from backend.settings_store import load_settings

from webapp.auth.errors import WorkflowError
from webapp.auth.invitation_store import InvitationStore
from webapp.auth.invitations import InvitationWorkflow
from webapp.auth.project_store import ProjectStore
from webapp.auth.session_store import SessionStore
from webapp.auth.task_store import TaskStore
from webapp.auth.user_store import UserStore
from webapp.auth.workspace_store import WorkspaceStore
from webapp.notifications import NotificationDispatcher, transport_from_settings
from webapp.routers import auth as auth_router
from webapp.routers import invitations as invitations_router
from webapp.routers import projects as projects_router
from webapp.routers import tasks as tasks_router
from webapp.routers import workspaces as workspaces_router

log = logging.getLogger("teamhub.server")

# Reachable without a bearer token
PUBLIC_PATHS = frozenset({
    "/health",
    "/api/auth/register",
    "/api/auth/register-with-invitation",
    "/api/auth/login",
    "/api/auth/refresh",
    "/api/invitations/verify",
})


def configure_logging() -> None:
    level = (os.environ.get("TEAMHUB_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Resolves ``Authorization: Bearer <token>`` to ``request.state.user``."""

    def __init__(self, app: Any, sessions: SessionStore, users: UserStore) -> None:
        super().__init__(app)
        self.sessions = sessions
        self.users = users

    async def dispatch(self, request: Request, call_next: Any):
        request.state.user = None
        request.state.token = None
        path = request.url.path.rstrip("/") or "/"
        if path in PUBLIC_PATHS or not path.startswith("/api/"):
            return await call_next(request)

        header = request.headers.get("authorization") or ""
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return JSONResponse({"status": "error", "message": "Not authenticated", "code": "unauthenticated"}, 401)

        token = token.strip()
        session = self.sessions.get_session(token)
        user = self.users.get_user(session["user_id"]) if session else None
        if user is None or not user.is_active:
            return JSONResponse({"status": "error", "message": "Invalid or expired token", "code": "unauthenticated"}, 401)

        request.state.user = user
        request.state.token = token
        return await call_next(request)


def create_app(settings: Optional[Settings] = None, notifier: Any = None) -> FastAPI:
    """Build the application with its stores, workflow and routers wired together."""
    settings = settings or load_settings()

    users = UserStore()
    sessions = SessionStore(
        access_hours=settings.session_timeout_hours,
        refresh_days=settings.refresh_timeout_days,
    )
    workspaces = WorkspaceStore()
    projects = ProjectStore()
    tasks = TaskStore()
    invitations = InvitationStore()
    if notifier is None:
        notifier = NotificationDispatcher(
            transport=transport_from_settings(settings),
            client_url=settings.client_url,
        )
    workflow = InvitationWorkflow(
        users, workspaces, projects, invitations,
        notifier=notifier,
        ttl_days=settings.invitation_ttl_days,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db()
        invitations.expire_stale()
        removed = sessions.cleanup_expired()
        if removed:
            log.info("Removed %d expired sessions", removed)
        log.info("%s %s started", APP_NAME, APP_VERSION)
        yield
        log.info("%s shutting down", APP_NAME)

    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(BearerAuthMiddleware, sessions=sessions, users=users)

    @app.exception_handler(WorkflowError)
    async def _workflow_error(request: Request, exc: WorkflowError):
        if exc.status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(exc.to_dict(), exc.status_code)

    @app.exception_handler(Exception)
    async def _internal_error(request: Request, exc: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"status": "error", "message": "Internal server error"}, 500)

    @app.get("/health")
    def health():
        return {"status": "ok", "app": APP_NAME, "version": APP_VERSION}

    auth_router.init(users, sessions, workflow)
    workspaces_router.init(workspace_store=workspaces, invitation_store=invitations, workflow=workflow)
    projects_router.init(project_store=projects, workspace_store=workspaces,
                         task_store=tasks, workflow=workflow)
    tasks_router.init(task_store=tasks, project_store=projects, workspace_store=workspaces,
                      user_store=users, notifier=notifier)
    invitations_router.init(workflow=workflow)

    app.include_router(auth_router.router)
    app.include_router(workspaces_router.router)
    app.include_router(projects_router.router)
    app.include_router(tasks_router.router)
    app.include_router(invitations_router.router)

    app.state.workflow = workflow
    app.state.notifier = notifier
    return app


configure_logging()
app = create_app()

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from backend.db.engine import now_iso
from webapp.auth.errors import WorkflowError
from webapp.auth.invitations import InvitationWorkflow
from webapp.auth.passwords import hash_password, normalize_email, validate_registration, verify_password
from webapp.auth.session_store import SessionStore
from webapp.auth.user_store import UserRecord, UserStore

from .common import error, read_json

log = logging.getLogger("teamhub.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])

# Module-level references (injected via init())
_user_store: Optional[UserStore] = None
_session_store: Optional[SessionStore] = None
_workflow: Optional[InvitationWorkflow] = None

# Rate limiting for login: {ip: [timestamps]}
_login_attempts: dict = defaultdict(list)
_rate_lock = threading.Lock()
MAX_LOGIN_ATTEMPTS = 5
RATE_WINDOW_SECONDS = 60


def init(user_store: UserStore, session_store: SessionStore, workflow: InvitationWorkflow) -> None:
    global _user_store, _session_store, _workflow
    _user_store = user_store
    _session_store = session_store
    _workflow = workflow
    with _rate_lock:
        _login_attempts.clear()


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _is_rate_limited(ip: str) -> bool:
    now = time.time()
    with _rate_lock:
        attempts = _login_attempts[ip]
        # Remove old attempts
        _login_attempts[ip] = [t for t in attempts if now - t < RATE_WINDOW_SECONDS]
        return len(_login_attempts[ip]) >= MAX_LOGIN_ATTEMPTS


def _record_attempt(ip: str) -> None:
    with _rate_lock:
        _login_attempts[ip].append(time.time())


def _token_payload(user: UserRecord) -> dict:
    access, refresh = _session_store.create_session(user.user_id)
    return {"token": access, "refresh_token": refresh, "user": user.public()}


def _create_account(name: str, email: str, password: str) -> UserRecord:
    rec = UserRecord(
        email=email,
        name=name,
        password_hash=hash_password(password),
        role="member",
    )
    return _user_store.create_user(rec)


@router.post("/register")
async def register(request: Request) -> JSONResponse:
    """Create an account, optionally applying an invitation payload (workspace/project id + role)."""
    assert _user_store and _session_store and _workflow

    body = await read_json(request)
    if body is None:
        return error("Invalid request")

    name = (body.get("name") or "").strip()
    email = normalize_email(body.get("email") or "")
    password = body.get("password") or ""

    problem = validate_registration(name, email, password)
    if problem:
        return error(problem, code="validation_failed")

    try:
        user = _create_account(name, email, password)
    except ValueError as e:
        return error(str(e), code="duplicate_email")

    payload = body.get("invitation")
    accepted = False
    if isinstance(payload, dict):
        # Never fails registration; errors are logged inside the workflow
        accepted = _workflow.auto_accept_at_registration(user, payload)

    data = {"status": "ok", **_token_payload(user)}
    if payload:
        data["invitation"] = {"accepted": accepted}
    log.info("User registered: %s", user.email)
    return JSONResponse(data, status_code=201)


@router.post("/register-with-invitation")
async def register_with_invitation(request: Request) -> JSONResponse:
    """Create an account and accept an invitation token in one step."""
    assert _user_store and _session_store and _workflow

    body = await read_json(request)
    if body is None:
        return error("Invalid request")

    token = (body.get("token") or "").strip()
    name = (body.get("name") or "").strip()
    email = normalize_email(body.get("email") or "")
    password = body.get("password") or ""

    if not token:
        return error("Token is required", code="validation_failed")
    problem = validate_registration(name, email, password)
    if problem:
        return error(problem, code="validation_failed")

    try:
        verified = _workflow.verify_invitation(token)
    except WorkflowError as e:
        return error(e.message, 400, e.code)
    if verified["invitation"].email != email:
        return error("Email does not match invitation", code="email_mismatch")
    if verified["user_exists"]:
        return error("User already exists. Please login instead.", code="duplicate_email")

    try:
        user = _create_account(name, email, password)
    except ValueError as e:
        return error(str(e), code="duplicate_email")

    accepted = True
    try:
        _workflow.accept_invitation(token, caller_id=user.user_id)
    except WorkflowError as e:
        log.warning("Registration with invitation: accept failed for %s: %s", email, e.message)
        accepted = False

    data = {"status": "ok", **_token_payload(user), "invitation": {"accepted": accepted}}
    return JSONResponse(data, status_code=201)


@router.post("/login")
async def login(request: Request) -> JSONResponse:
    assert _user_store and _session_store

    ip = _client_ip(request)
    if _is_rate_limited(ip):
        return error("Too many login attempts. Try again later.", 429, "rate_limited")

    body = await read_json(request)
    if body is None:
        return error("Invalid request")

    email = normalize_email(body.get("email") or "")
    password = body.get("password") or ""
    if not email or not password:
        _record_attempt(ip)
        return error("Email and password required")

    user = _user_store.get_by_email(email)
    if user is None or not verify_password(password, user.password_hash):
        _record_attempt(ip)
        log.warning("Failed login attempt for '%s' from %s", email, ip)
        return error("Invalid credentials", 401, "invalid_credentials")
    if not user.is_active:
        return error("Account is deactivated", 403, "inactive")

    user = _user_store.update_user(user.user_id, {"last_login": now_iso()}) or user
    log.info("User '%s' logged in from %s", email, ip)
    return JSONResponse({"status": "ok", **_token_payload(user)})


@router.post("/refresh")
async def refresh(request: Request) -> JSONResponse:
    """Rotate a refresh token: the old one is revoked and a new pair issued."""
    assert _user_store and _session_store

    body = await read_json(request)
    refresh_token = (body or {}).get("refresh_token") or ""
    if not refresh_token:
        return error("Refresh token is required", 401, "invalid_refresh_token")

    rotated = _session_store.rotate_refresh(refresh_token)
    if rotated is None:
        return error("Invalid refresh token", 401, "invalid_refresh_token")
    user_id, access, new_refresh = rotated
    user = _user_store.get_user(user_id)
    if user is None or not user.is_active:
        _session_store.delete_user_sessions(user_id)
        return error("Invalid refresh token", 401, "invalid_refresh_token")
    return JSONResponse({"status": "ok", "token": access, "refresh_token": new_refresh})


@router.post("/logout")
async def logout(request: Request) -> JSONResponse:
    """Revoke one refresh token, or every session of the caller when none is given."""
    assert _session_store
    user = request.state.user
    body = await read_json(request) or {}
    refresh_token = body.get("refresh_token") or ""

    if refresh_token:
        _session_store.revoke_refresh(user.user_id, refresh_token)
        token = getattr(request.state, "token", None)
        if token:
            _session_store.delete_session(token)
    else:
        _session_store.delete_user_sessions(user.user_id)
    return JSONResponse({"status": "ok"})


@router.get("/me")
async def me(request: Request) -> JSONResponse:
    user = request.state.user
    return JSONResponse({"status": "ok", "user": user.public()})

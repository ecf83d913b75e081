from __future__ import annotations

import re
import secrets
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash

from app.community import mailer
from app.community.audit import record_event
from app.community.constants import (
    PASSWORD_MIN_LENGTH,
    PASSWORD_RESET_TTL_SECONDS,
    ROLE_ADMIN,
    ROLE_STUDENT,
    ROLE_VISITOR,
)
from app.community.db import db_session
from app.community.errors import AuthenticationRequired, Conflict, Forbidden, RateLimited, ValidationError
from app.community.models import AdminStudentId, PasswordResetToken, User
from app.community.security import codes_match, ensure_csrf_token
from app.community.utils import get_payload

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,64}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Visitor sessions carry no user row; g.is_visitor marks them.
    Also assigns a per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    g.is_visitor = bool(session.get("visitor"))

    user_id = session.get("user_id")
    if not user_id:
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        return
    if not user or not user.is_active:
        session.pop("user_id", None)
        return
    g.current_user = user


def display_name_from_username(username: str) -> str:
    parts = [p for p in re.split(r"[_.\-]+", username) if p]
    return " ".join(p.capitalize() for p in parts) or username


def session_user_json(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "grade": user.grade,
        "class_name": user.class_name,
        "student_code": user.student_code,
        "avatar_url": user.avatar_url,
        "credibility_score": user.credibility_score,
        "reputation_score": user.reputation_score,
        "account_status": user.account_status,
    }


def _start_session(user: User) -> dict:
    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    return {"user": session_user_json(user), "csrf_token": ensure_csrf_token()}


def _validate_credentials(payload: dict) -> tuple[str, str, str]:
    username = (str(payload.get("username") or "")).strip()
    email = (str(payload.get("email") or "")).strip().lower()
    password = str(payload.get("password") or "")
    errors: list[str] = []
    if not USERNAME_RE.match(username):
        errors.append("Username must be 3-64 characters: letters, numbers, '.', '_' or '-'.")
    if not EMAIL_RE.match(email):
        errors.append("A valid email is required.")
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters.")
    if errors:
        raise ValidationError(errors)
    return username, email, password


def _ensure_unique(s, username: str, email: str) -> None:
    if s.query(User).filter(func.lower(User.username) == username.lower()).count():
        raise Conflict("Username is already taken.")
    if s.query(User).filter(User.email == email).count():
        raise Conflict("Email is already registered.")


@bp.get("/csrf")
def csrf():
    return jsonify({"csrf_token": ensure_csrf_token()})


@bp.post("/register")
def register():
    """Student registration against an admin-issued, unassigned student ID."""
    s = db_session()
    payload = get_payload()
    username, email, password = _validate_credentials(payload)
    code = (str(payload.get("student_code") or payload.get("student_id") or "")).strip().upper()
    if not code:
        raise ValidationError("Student ID is required.")

    ticket = (
        s.query(AdminStudentId)
        .filter(AdminStudentId.student_code == code, AdminStudentId.is_assigned.is_(False))
        .one_or_none()
    )
    if not ticket or ticket.username.lower() != username.lower():
        raise ValidationError("Invalid student ID or the ID does not match this username.")
    _ensure_unique(s, username, email)

    now = datetime.utcnow()
    user = User(
        username=username,
        email=email,
        password_hash=generate_password_hash(password),
        name=display_name_from_username(username),
        student_code=ticket.student_code,
        role=ROLE_STUDENT,
        grade=ticket.grade,
        class_name=ticket.class_name,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    ticket.is_assigned = True
    ticket.assigned_to_user_id = user.id
    ticket.assigned_at = now
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id), metadata={"student_code": ticket.student_code})
    s.commit()
    return jsonify(_start_session(user)), 201


@bp.post("/admin/register")
def admin_register():
    s = db_session()
    payload = get_payload()
    expected = (current_app.config.get("ADMIN_REGISTRATION_CODE") or "").strip()
    if not expected:
        raise Forbidden("Admin registration is disabled.")
    if not codes_match(str(payload.get("admin_code") or ""), expected):
        record_event(s, actor=None, action="auth.admin_register_failed", entity_type="User", reason="Invalid admin code")
        s.commit()
        raise Forbidden("Invalid admin code.")
    username, email, password = _validate_credentials(payload)
    _ensure_unique(s, username, email)

    now = datetime.utcnow()
    user = User(
        username=username,
        email=email,
        password_hash=generate_password_hash(password),
        name=(str(payload.get("name") or "")).strip() or display_name_from_username(username),
        role=ROLE_ADMIN,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.admin_register", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify(_start_session(user)), 201


def _login(admin_only: bool):
    payload = get_payload()
    identifier = (str(payload.get("username") or payload.get("email") or "")).strip()
    password = str(payload.get("password") or "")
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        raise RateLimited("Too many login attempts. Please wait 5 minutes.")
    _record_attempt(ip)

    try:
        s = db_session()
        user = (
            s.query(User)
            .filter((func.lower(User.username) == identifier.lower()) | (User.email == identifier.lower()))
            .one_or_none()
        )
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=identifier[:128] or None,
                reason="Invalid credentials",
            )
            s.commit()
            raise AuthenticationRequired("Invalid credentials.")
        if admin_only and not user.is_admin:
            record_event(s, actor=user, action="auth.admin_login_denied", entity_type="User", entity_id=str(user.id))
            s.commit()
            raise Forbidden("Admin access required.")

        _login_attempts[ip].clear()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id), metadata={"admin_portal": admin_only})
        s.commit()
        return jsonify(_start_session(user))
    except (AuthenticationRequired, Forbidden):
        raise
    except Exception:
        current_app.logger.exception("Login crashed (identifier=%s request_id=%s)", identifier, getattr(g, "request_id", None))
        raise


@bp.post("/login")
def login():
    return _login(admin_only=False)


@bp.post("/admin/login")
def admin_login():
    return _login(admin_only=True)


@bp.post("/visitor")
def visitor():
    session.clear()
    session["visitor"] = True
    session.permanent = True
    return jsonify({"user": {"role": ROLE_VISITOR}, "csrf_token": ensure_csrf_token()})


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return jsonify({"success": True})


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if user:
        return jsonify({"user": session_user_json(user)})
    if getattr(g, "is_visitor", False):
        return jsonify({"user": {"role": ROLE_VISITOR}})
    raise AuthenticationRequired("Not authenticated")


@bp.post("/forgot-password")
def forgot_password():
    """Always answers the same way so the endpoint does not reveal which emails exist."""
    s = db_session()
    email = (str(get_payload().get("email") or "")).strip().lower()
    if not email:
        raise ValidationError("Email is required.")
    generic = {"message": "If an account exists for that email, a reset link has been sent."}

    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active:
        return jsonify(generic)

    s.query(PasswordResetToken).filter(PasswordResetToken.user_id == user.id).delete(synchronize_session=False)
    token = secrets.token_urlsafe(32)
    s.add(
        PasswordResetToken(
            user_id=user.id,
            token=token,
            expires_at=datetime.utcnow() + timedelta(seconds=PASSWORD_RESET_TTL_SECONDS),
        )
    )
    record_event(s, actor=user, action="auth.password_reset_requested", entity_type="User", entity_id=str(user.id))
    s.commit()

    ok, err = mailer.send_password_reset_email(user.email, user.name, token)
    if not ok:
        current_app.logger.error("Password reset email failed for user_id=%s: %s", user.id, err)
    return jsonify(generic)


def _valid_token(s, token: str) -> PasswordResetToken | None:
    if not token:
        return None
    row = s.query(PasswordResetToken).filter(PasswordResetToken.token == token).one_or_none()
    if not row or row.expires_at < datetime.utcnow():
        return None
    return row


@bp.get("/reset-password/<token>")
def reset_password_validate(token: str):
    s = db_session()
    return jsonify({"valid": _valid_token(s, token) is not None})


@bp.post("/reset-password")
def reset_password():
    s = db_session()
    payload = get_payload()
    password = str(payload.get("password") or "")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters.")
    row = _valid_token(s, str(payload.get("token") or ""))
    if row is None:
        raise ValidationError("Invalid or expired reset token.")
    user = s.get(User, row.user_id)
    user.password_hash = generate_password_hash(password)
    user.updated_at = datetime.utcnow()
    s.delete(row)
    record_event(s, actor=user, action="auth.password_reset", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"success": True, "message": "Password updated. You can now log in."})

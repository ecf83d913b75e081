from __future__ import annotations

import json
import secrets
import string
from datetime import datetime
from urllib.parse import urlparse

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from app.community.accounts import delete_user_account
from app.community.audit import record_event
from app.community.constants import (
    GRADES,
    ROLE_ADMIN,
    ROLE_STUDENT,
    SECTION_LETTERS,
    SETTING_DONATION_URL,
    STUDENT_CODE_LENGTH,
)
from app.community.db import db_session
from app.community.errors import Conflict, Forbidden, NotFound, ValidationError
from app.community.models import AdminStudentId, AdminSuccession, AuditEvent, Setting, User
from app.community.rbac import member, require_admin
from app.community.utils import clean_str, get_payload, iso, parse_int

bp = Blueprint("admin", __name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_student_code() -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(STUDENT_CODE_LENGTH))


def student_id_json(row: AdminStudentId) -> dict:
    return {
        "id": row.id,
        "username": row.username,
        "student_code": row.student_code,
        "grade": row.grade,
        "class_name": row.class_name,
        "is_assigned": row.is_assigned,
        "assigned_to_user_id": row.assigned_to_user_id,
        "assigned_at": iso(row.assigned_at),
        "created_at": iso(row.created_at),
    }


def _user_row(u: User) -> dict:
    return {
        "id": u.id,
        "username": u.username,
        "email": u.email,
        "name": u.name,
        "role": u.role,
        "grade": u.grade,
        "class_name": u.class_name,
        "student_code": u.student_code,
        "credibility_score": u.credibility_score,
        "reputation_score": u.reputation_score,
        "account_status": u.account_status,
        "is_active": u.is_active,
        "created_at": iso(u.created_at),
    }


def get_setting(s, key: str) -> str | None:
    row = s.query(Setting).filter(Setting.key == key).one_or_none()
    return row.value if row else None


def set_setting(s, key: str, value: str | None, user: User) -> Setting:
    row = s.query(Setting).filter(Setting.key == key).one_or_none()
    old = row.value if row else None
    if row is None:
        row = Setting(key=key)
        s.add(row)
    row.value = value
    row.updated_at = datetime.utcnow()
    row.updated_by_user_id = user.id
    record_event(s, actor=user, action="settings.update", entity_type="Setting", entity_id=key, metadata={"old": old, "new": value})
    return row


# ---------- Student IDs ----------
@bp.post("/student-ids")
@require_admin
def student_ids_create():
    s = db_session()
    admin = member()
    payload = get_payload()
    username = clean_str(payload.get("username"))
    grade = parse_int(payload.get("grade"), "grade")
    class_name = (clean_str(payload.get("class_name")) or "").upper()
    errors: list[str] = []
    if not username:
        errors.append("Username is required.")
    if grade not in GRADES:
        errors.append("Grade must be between 1 and 6.")
    if class_name not in SECTION_LETTERS:
        errors.append("Class must be one of A-E.")
    if errors:
        raise ValidationError(errors)

    lowered = username.lower()
    if s.query(AdminStudentId).filter(func.lower(AdminStudentId.username) == lowered).count():
        raise Conflict("A student ID already exists for this username.")
    if s.query(User).filter(func.lower(User.username) == lowered).count():
        raise Conflict("A user with this username already exists.")

    code = generate_student_code()
    while s.query(AdminStudentId).filter(AdminStudentId.student_code == code).count():
        code = generate_student_code()
    row = AdminStudentId(
        username=username,
        student_code=code,
        grade=grade,
        class_name=class_name,
        created_by_admin_id=admin.id,
    )
    s.add(row)
    s.flush()
    record_event(s, actor=admin, action="student_id.create", entity_type="AdminStudentId", entity_id=str(row.id), metadata={"username": username, "grade": grade, "class_name": class_name})
    s.commit()
    return jsonify(student_id_json(row)), 201


@bp.get("/student-ids")
@require_admin
def student_ids_list():
    s = db_session()
    rows = s.query(AdminStudentId).order_by(AdminStudentId.created_at.desc(), AdminStudentId.id.desc()).all()
    return jsonify([student_id_json(r) for r in rows])


@bp.delete("/student-ids/<int:row_id>")
@require_admin
def student_ids_delete(row_id: int):
    s = db_session()
    row = s.get(AdminStudentId, row_id)
    if not row:
        raise NotFound("Student ID not found")
    if row.is_assigned:
        raise Conflict("Assigned student IDs cannot be deleted.")
    record_event(s, actor=member(), action="student_id.delete", entity_type="AdminStudentId", entity_id=str(row.id), metadata={"username": row.username})
    s.delete(row)
    s.commit()
    return jsonify({"success": True})


# ---------- Accounts ----------
@bp.get("/students")
@require_admin
def students_list():
    s = db_session()
    q = s.query(User).filter(User.role == ROLE_STUDENT)
    grade = parse_int(request.args.get("grade"), "grade", required=False)
    if grade is not None:
        q = q.filter(User.grade == grade)
    class_name = clean_str(request.args.get("class_name"))
    if class_name:
        q = q.filter(User.class_name == class_name.upper())
    users = q.order_by(User.grade.asc(), User.class_name.asc(), User.name.asc()).all()
    return jsonify([_user_row(u) for u in users])


@bp.get("/users")
@require_admin
def users_list():
    s = db_session()
    users = s.query(User).order_by(User.role.asc(), User.username.asc()).all()
    return jsonify([_user_row(u) for u in users])


@bp.delete("/students/<int:user_id>")
@require_admin
def students_delete(user_id: int):
    s = db_session()
    admin = member()
    if user_id == admin.id:
        raise Conflict("You cannot delete your own account.")
    target = s.get(User, user_id)
    if not target:
        raise NotFound("User not found")
    if target.is_admin:
        raise Forbidden("Admin accounts cannot be deleted here.")
    counts = delete_user_account(s, target, admin, reason=clean_str(get_payload().get("reason")))
    s.commit()
    return jsonify({"success": True, "deleted": counts})


# ---------- Admin succession ----------
@bp.post("/handover")
@require_admin
def handover():
    """Current admin steps down to student; the successor becomes admin. One transaction."""
    s = db_session()
    admin = member()
    payload = get_payload()
    successor_id = parse_int(payload.get("new_admin_id"), "new_admin_id")
    if successor_id == admin.id:
        raise Conflict("You cannot hand over to yourself.")
    successor = s.get(User, successor_id)
    if not successor or not successor.is_active:
        raise NotFound("Successor not found")
    if successor.is_admin:
        raise Conflict("That user is already an admin.")

    now = datetime.utcnow()
    admin.role = ROLE_STUDENT
    admin.updated_at = now
    successor.role = ROLE_ADMIN
    successor.updated_at = now
    row = AdminSuccession(
        previous_admin_id=admin.id,
        new_admin_id=successor.id,
        handover_date=now,
        notes=clean_str(payload.get("notes")),
    )
    s.add(row)
    s.flush()
    record_event(s, actor=admin, action="admin.handover", entity_type="User", entity_id=str(successor.id), metadata={"succession_id": row.id})
    s.commit()
    return jsonify({"success": True, "previous_admin_id": admin.id, "new_admin_id": successor.id, "succession_id": row.id})


@bp.post("/promote")
@require_admin
def promote():
    s = db_session()
    admin = member()
    target_id = parse_int(get_payload().get("user_id"), "user_id")
    target = s.get(User, target_id)
    if not target or not target.is_active:
        raise NotFound("User not found")
    if target.is_admin:
        raise Conflict("That user is already an admin.")
    target.role = ROLE_ADMIN
    target.updated_at = datetime.utcnow()
    record_event(s, actor=admin, action="admin.promote", entity_type="User", entity_id=str(target.id))
    s.commit()
    return jsonify({"success": True, "user": _user_row(target)})


@bp.get("/succession-history")
@require_admin
def succession_history():
    s = db_session()
    rows = s.query(AdminSuccession).order_by(AdminSuccession.handover_date.desc(), AdminSuccession.id.desc()).all()
    ids = {r.previous_admin_id for r in rows} | {r.new_admin_id for r in rows}
    names = {u.id: u.name for u in s.query(User).filter(User.id.in_([i for i in ids if i])).all()} if ids else {}
    return jsonify(
        [
            {
                "id": r.id,
                "previous_admin_id": r.previous_admin_id,
                "previous_admin_name": names.get(r.previous_admin_id),
                "new_admin_id": r.new_admin_id,
                "new_admin_name": names.get(r.new_admin_id),
                "handover_date": iso(r.handover_date),
                "notes": r.notes,
            }
            for r in rows
        ]
    )


# ---------- Settings ----------
@bp.put("/settings/donation-url")
@require_admin
def donation_url_update():
    s = db_session()
    url = clean_str(get_payload().get("url"))
    if url:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("Donation URL must be a valid http(s) URL.")
    set_setting(s, SETTING_DONATION_URL, url, member())
    s.commit()
    return jsonify({"url": url})


# ---------- Audit ----------
@bp.get("/audit")
@require_admin
def audit_list():
    s = db_session()
    limit = max(1, min(parse_int(request.args.get("limit"), "limit", required=False) or 100, 500))
    q = s.query(AuditEvent)
    action = clean_str(request.args.get("action"))
    if action:
        q = q.filter(AuditEvent.action.like(f"{action}%"))
    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
    return jsonify(
        [
            {
                "id": e.id,
                "created_at": iso(e.created_at),
                "request_id": e.request_id,
                "actor_user_id": e.actor_user_id,
                "actor_username": e.actor_username,
                "action": e.action,
                "entity_type": e.entity_type,
                "entity_id": e.entity_id,
                "reason": e.reason,
                "metadata": json.loads(e.metadata_json) if e.metadata_json else None,
                "client_ip": e.client_ip,
            }
            for e in events
        ]
    )

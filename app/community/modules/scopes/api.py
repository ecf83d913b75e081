from __future__ import annotations

from flask import Blueprint, jsonify

from app.community.db import db_session
from app.community.models import User
from app.community.modules.scopes.models import DigitalKey, Scope
from app.community.modules.scopes.service import (
    accessible_scope_ids,
    create_scope,
    delete_scope,
    get_scope,
    has_access,
    list_keys,
    unlock,
)
from app.community.rbac import current_user, member, require_admin, require_login, require_member
from app.community.utils import get_payload, iso, parse_int

bp = Blueprint("scopes", __name__)


def scope_json(scope: Scope, user: User | None, *, allowed: set[int] | None = None) -> dict:
    data = {
        "id": scope.id,
        "name": scope.name,
        "type": scope.type,
        "grade_number": scope.grade_number,
        "section_name": scope.section_name,
        "created_at": iso(scope.created_at),
    }
    if allowed is not None:
        data["has_access"] = scope.type == "global" or scope.id in allowed
    else:
        data["has_access"] = True
    if user is not None and user.is_admin:
        data["access_code"] = scope.access_code
    return data


def key_json(key: DigitalKey, scope: Scope | None = None) -> dict:
    data = {
        "id": key.id,
        "user_id": key.user_id,
        "scope_id": key.scope_id,
        "unlocked_at": iso(key.unlocked_at),
    }
    if scope is not None:
        data["scope"] = {"id": scope.id, "name": scope.name, "type": scope.type}
    return data


@bp.get("/scopes")
@require_login
def scopes_list():
    s = db_session()
    u = current_user()
    allowed = accessible_scope_ids(s, u)
    scopes = s.query(Scope).order_by(Scope.type.asc(), Scope.grade_number.asc(), Scope.section_name.asc()).all()
    return jsonify([scope_json(sc, u, allowed=allowed) for sc in scopes])


@bp.get("/scopes/<int:scope_id>")
@require_login
def scope_detail(scope_id: int):
    s = db_session()
    u = current_user()
    scope = get_scope(s, scope_id)
    return jsonify(scope_json(scope, u, allowed=accessible_scope_ids(s, u)))


@bp.post("/admin/scopes")
@require_admin
def scope_create():
    s = db_session()
    u = member()
    scope = create_scope(s, get_payload(), u)
    s.commit()
    return jsonify(scope_json(scope, u)), 201


@bp.delete("/admin/scopes/<int:scope_id>")
@require_admin
def scope_delete(scope_id: int):
    s = db_session()
    u = member()
    scope = get_scope(s, scope_id)
    delete_scope(s, scope, u)
    s.commit()
    return jsonify({"success": True})


@bp.get("/keys")
@require_login
def keys_list():
    u = current_user()
    if u is None:
        return jsonify([])
    s = db_session()
    keys = list_keys(s, u)
    scopes = {sc.id: sc for sc in s.query(Scope).filter(Scope.id.in_([k.scope_id for k in keys])).all()} if keys else {}
    return jsonify([key_json(k, scopes.get(k.scope_id)) for k in keys])


@bp.get("/keys/check/<int:scope_id>")
@require_login
def keys_check(scope_id: int):
    s = db_session()
    return jsonify({"scope_id": scope_id, "has_access": has_access(s, current_user(), scope_id)})


@bp.post("/keys/unlock")
@require_member
def keys_unlock():
    s = db_session()
    u = member()
    payload = get_payload()
    scope_id = parse_int(payload.get("scope_id"), "scope_id")
    code = str(payload.get("access_code") or payload.get("code") or "")
    key, message, created = unlock(s, u, scope_id, code)
    s.commit()
    return jsonify(
        {
            "success": True,
            "message": message,
            "created": created,
            "key": key_json(key) if key else None,
        }
    ), (201 if created else 200)

from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.community.accounts import delete_user_account
from app.community.constants import GRADES, ROLE_STUDENT, SECTION_LETTERS
from app.community.db import db_session
from app.community.errors import Conflict, Forbidden, ValidationError
from app.community.models import User
from app.community.modules.profiles.models import ProfileComment
from app.community.modules.profiles.service import (
    add_profile_comment,
    author_json,
    author_summaries,
    average_rating,
    calculate_reputation,
    get_peer_rating,
    get_user,
    list_profile_comments,
    peer_rating_json,
    rate_peer,
    set_account_status,
    set_credibility,
    update_hobbies,
    update_profile,
    update_tendencies,
    user_stats,
)
from app.community.rbac import current_user, member, require_admin, require_login, require_member, user_is_admin
from app.community.utils import get_payload, iso, parse_int

bp = Blueprint("profiles", __name__)


def user_json(u: User, viewer: User | None) -> dict:
    data = author_json(u)
    data.update(
        {
            "bio": u.bio,
            "hobbies": u.hobbies or [],
            "tendencies": u.tendencies or {},
            "peer_scores": u.peer_scores or {},
            "created_at": iso(u.created_at),
        }
    )
    if viewer is not None and (viewer.id == u.id or viewer.is_admin):
        data["email"] = u.email
        data["student_code"] = u.student_code
        data["is_active"] = u.is_active
    return data


def _own_profile(user_id: int) -> User:
    u = member()
    if u.id != user_id:
        raise Forbidden("You can only edit your own profile")
    return u


def profile_comment_json(c: ProfileComment, author: dict | None) -> dict:
    return {
        "id": c.id,
        "profile_user_id": c.profile_user_id,
        "author_id": c.author_id,
        "content": c.content,
        "rating": c.rating,
        "created_at": iso(c.created_at),
        "author": author,
    }


@bp.get("/users/<int:user_id>")
@require_login
def user_profile(user_id: int):
    s = db_session()
    return jsonify(user_json(get_user(s, user_id), current_user()))


@bp.get("/users/<int:user_id>/stats")
@require_login
def user_profile_stats(user_id: int):
    s = db_session()
    return jsonify(user_stats(s, get_user(s, user_id)))


@bp.patch("/users/<int:user_id>/profile")
@require_member
def user_profile_update(user_id: int):
    s = db_session()
    u = _own_profile(user_id)
    update_profile(s, u, get_payload())
    s.commit()
    return jsonify(user_json(u, u))


@bp.patch("/users/<int:user_id>/hobbies")
@require_member
def user_hobbies_update(user_id: int):
    s = db_session()
    u = _own_profile(user_id)
    update_hobbies(s, u, get_payload().get("hobbies"))
    s.commit()
    return jsonify({"hobbies": u.hobbies})


@bp.patch("/users/<int:user_id>/tendencies")
@require_member
def user_tendencies_update(user_id: int):
    s = db_session()
    u = _own_profile(user_id)
    update_tendencies(s, u, get_payload())
    s.commit()
    return jsonify({"tendencies": u.tendencies})


@bp.get("/users/search")
@require_member
def users_search():
    s = db_session()
    email = (request.args.get("email") or "").strip().lower()
    if not email:
        raise ValidationError("email is required.")
    found = s.query(User).filter(User.email == email).one_or_none()
    return jsonify(user_json(found, current_user()) if found else None)


@bp.get("/classes/<int:grade>/<class_name>/students")
@require_login
def class_students(grade: int, class_name: str):
    class_name = class_name.strip().upper()
    if grade not in GRADES or class_name not in SECTION_LETTERS:
        raise ValidationError("Unknown class.")
    s = db_session()
    students = (
        s.query(User)
        .filter(User.role == ROLE_STUDENT, User.grade == grade, User.class_name == class_name)
        .order_by(User.name.asc())
        .all()
    )
    return jsonify([author_json(st) for st in students])


@bp.patch("/users/<int:user_id>/credibility")
@require_admin
def user_credibility(user_id: int):
    s = db_session()
    target = get_user(s, user_id)
    payload = get_payload()
    if "credibility_score" not in payload:
        raise ValidationError("credibility_score is required.")
    set_credibility(s, target, payload.get("credibility_score"), member())
    calculate_reputation(s, target)
    s.commit()
    return jsonify(user_json(target, member()))


@bp.patch("/users/<int:user_id>/status")
@require_admin
def user_status(user_id: int):
    s = db_session()
    target = get_user(s, user_id)
    set_account_status(s, target, str(get_payload().get("account_status") or ""), member())
    s.commit()
    return jsonify(user_json(target, member()))


@bp.delete("/users/<int:user_id>")
@require_admin
def user_delete(user_id: int):
    s = db_session()
    admin = member()
    if admin.id == user_id:
        raise Conflict("You cannot delete your own account.")
    target = get_user(s, user_id)
    counts = delete_user_account(s, target, admin)
    s.commit()
    return jsonify({"success": True, "deleted": counts})


@bp.post("/reputation/calculate")
@require_member
def reputation_calculate():
    s = db_session()
    u = member()
    target = u
    raw = get_payload().get("user_id")
    if raw is not None:
        target_id = parse_int(raw, "user_id")
        if target_id != u.id and not user_is_admin(u):
            raise Forbidden("Only admins can recalculate other users")
        target = get_user(s, target_id)
    score = calculate_reputation(s, target)
    s.commit()
    return jsonify({"user_id": target.id, "reputation_score": score})


@bp.post("/users/<int:user_id>/rate")
@require_member
def user_rate(user_id: int):
    s = db_session()
    rater = member()
    rated = get_user(s, user_id)
    rating, created = rate_peer(s, rater, rated, get_payload())
    s.commit()
    return jsonify(
        {
            "rating": peer_rating_json(rating),
            "created": created,
            "peer_scores": rated.peer_scores or {},
            "average_rating": average_rating(rated),
        }
    ), (201 if created else 200)


@bp.get("/users/<int:user_id>/rating")
@require_member
def user_my_rating(user_id: int):
    s = db_session()
    rated = get_user(s, user_id)
    rating = get_peer_rating(s, member(), rated)
    return jsonify(peer_rating_json(rating) if rating else None)


@bp.get("/users/<int:user_id>/comments")
@require_login
def user_comments_list(user_id: int):
    s = db_session()
    comments = list_profile_comments(s, get_user(s, user_id))
    authors = author_summaries(s, [c.author_id for c in comments])
    return jsonify([profile_comment_json(c, authors.get(c.author_id)) for c in comments])


@bp.post("/users/<int:user_id>/comments")
@require_member
def user_comments_create(user_id: int):
    s = db_session()
    u = member()
    c = add_profile_comment(s, u, get_user(s, user_id), get_payload())
    s.commit()
    return jsonify(profile_comment_json(c, author_summaries(s, [u.id]).get(u.id))), 201

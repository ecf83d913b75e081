from __future__ import annotations

from flask import Blueprint, jsonify

from app.community.db import db_session
from app.community.errors import NotFound
from app.community.models import User
from app.community.modules.profiles.service import author_summaries
from app.community.modules.teachers.models import Teacher, TeacherReview
from app.community.modules.teachers.service import (
    add_review,
    admin_update_teacher,
    average_rating,
    claim_teacher,
    create_teacher,
    delete_teacher,
    get_teacher,
    list_reviews,
    list_teachers,
    moderate_review,
    my_teacher_profile,
    self_update_teacher,
)
from app.community.rbac import current_user, member, require_admin, require_login, require_member, user_is_admin
from app.community.utils import get_payload, iso

bp = Blueprint("teachers", __name__)


def teacher_json(t: Teacher, user: User | None, *, avg: float | None = None) -> dict:
    data = {
        "id": t.id,
        "name": t.name,
        "photo_url": t.photo_url,
        "description": t.description,
        "academic_achievements": t.academic_achievements or [],
        "classroom_rules": t.classroom_rules or [],
        "is_claimed": t.is_claimed,
        "user_id": t.user_id,
        "average_rating": avg,
        "created_at": iso(t.created_at),
    }
    # Claim codes are only shown to admins (to hand out) and the owner.
    if user_is_admin(user) or (user is not None and t.user_id == user.id):
        data["teacher_code"] = t.teacher_code
    return data


def review_json(r: TeacherReview, student: dict | None) -> dict:
    return {
        "id": r.id,
        "teacher_id": r.teacher_id,
        "student_id": r.student_id,
        "rating": r.rating,
        "comment": r.comment,
        "is_moderated": r.is_moderated,
        "created_at": iso(r.created_at),
        "student": student,
    }


@bp.get("/teachers")
@require_login
def teachers_list():
    s = db_session()
    u = current_user()
    return jsonify([teacher_json(t, u, avg=average_rating(s, t)) for t in list_teachers(s)])


@bp.get("/teachers/me")
@require_member
def teachers_me():
    s = db_session()
    u = member()
    t = my_teacher_profile(s, u)
    return jsonify(teacher_json(t, u, avg=average_rating(s, t)))


@bp.get("/teachers/<int:teacher_id>")
@require_login
def teacher_detail(teacher_id: int):
    s = db_session()
    u = current_user()
    t = get_teacher(s, teacher_id)
    reviews = list_reviews(s, t, include_hidden=user_is_admin(u))
    students = author_summaries(s, [r.student_id for r in reviews])
    data = teacher_json(t, u, avg=average_rating(s, t))
    data["reviews"] = [review_json(r, students.get(r.student_id)) for r in reviews]
    return jsonify(data)


@bp.post("/teachers")
@require_admin
def teachers_create():
    s = db_session()
    u = member()
    t = create_teacher(s, get_payload(), u)
    s.commit()
    return jsonify(teacher_json(t, u)), 201


@bp.patch("/teachers/<int:teacher_id>")
@require_admin
def teachers_update(teacher_id: int):
    s = db_session()
    u = member()
    t = get_teacher(s, teacher_id)
    admin_update_teacher(s, t, get_payload(), u)
    s.commit()
    return jsonify(teacher_json(t, u, avg=average_rating(s, t)))


@bp.delete("/teachers/<int:teacher_id>")
@require_admin
def teachers_delete(teacher_id: int):
    s = db_session()
    t = get_teacher(s, teacher_id)
    result = delete_teacher(s, t, member())
    s.commit()
    return jsonify({"success": True, **result})


@bp.delete("/admin/teachers/<int:teacher_id>")
@require_admin
def teachers_delete_account(teacher_id: int):
    s = db_session()
    t = get_teacher(s, teacher_id)
    result = delete_teacher(s, t, member(), remove_account=True)
    s.commit()
    return jsonify({"success": True, **result})


@bp.post("/teachers/claim")
@require_member
def teachers_claim():
    s = db_session()
    u = member()
    payload = get_payload()
    t = claim_teacher(s, str(payload.get("teacher_code") or payload.get("code") or ""), u)
    s.commit()
    return jsonify(teacher_json(t, u, avg=average_rating(s, t)))


@bp.patch("/teachers/me")
@require_member
def teachers_self_update():
    s = db_session()
    u = member()
    t = my_teacher_profile(s, u)
    self_update_teacher(s, t, get_payload(), u)
    s.commit()
    return jsonify(teacher_json(t, u, avg=average_rating(s, t)))


@bp.get("/teachers/<int:teacher_id>/reviews")
@require_login
def teacher_reviews(teacher_id: int):
    s = db_session()
    t = get_teacher(s, teacher_id)
    reviews = list_reviews(s, t, include_hidden=user_is_admin(current_user()))
    students = author_summaries(s, [r.student_id for r in reviews])
    return jsonify([review_json(r, students.get(r.student_id)) for r in reviews])


@bp.post("/teachers/<int:teacher_id>/reviews")
@require_member
def teacher_review_create(teacher_id: int):
    s = db_session()
    u = member()
    t = get_teacher(s, teacher_id)
    review = add_review(s, t, u, get_payload())
    s.commit()
    return jsonify(review_json(review, author_summaries(s, [u.id]).get(u.id))), 201


@bp.patch("/teachers/<int:teacher_id>/reviews/<int:review_id>/moderate")
@require_admin
def teacher_review_moderate(teacher_id: int, review_id: int):
    s = db_session()
    review = s.get(TeacherReview, review_id)
    if not review or review.teacher_id != teacher_id:
        raise NotFound("Review not found")
    hidden = get_payload().get("hidden", True)
    moderate_review(s, review, bool(hidden), member())
    s.commit()
    return jsonify(review_json(review, None))

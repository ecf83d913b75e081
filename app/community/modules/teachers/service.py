from __future__ import annotations

import secrets
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.community.audit import record_event
from app.community.errors import Conflict, Forbidden, NotFound, ValidationError
from app.community.utils import clean_str

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.community.models import User
    from app.community.modules.teachers.models import Teacher, TeacherReview

SELF_EDITABLE_FIELDS = ("photo_url", "description", "classroom_rules", "academic_achievements")
ADMIN_EDITABLE_FIELDS = ("name",) + SELF_EDITABLE_FIELDS


def generate_teacher_code() -> str:
    return "T" + secrets.token_hex(5).upper()


def _string_list(value, field: str) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{field} must be a list of strings.")
    items = [v.strip() for v in value if v.strip()]
    return items or None


def _apply_fields(teacher: "Teacher", payload: dict, fields: tuple[str, ...]) -> dict:
    changes: dict[str, dict] = {}
    for field in fields:
        if field not in payload:
            continue
        if field in ("classroom_rules", "academic_achievements"):
            value = _string_list(payload.get(field), field)
        else:
            value = clean_str(payload.get(field))
        if field == "name" and not value:
            raise ValidationError("Name is required.")
        if value != getattr(teacher, field):
            changes[field] = {"old": getattr(teacher, field), "new": value}
            setattr(teacher, field, value)
    teacher.updated_at = datetime.utcnow()
    return changes


def get_teacher(s: "Session", teacher_id: int) -> "Teacher":
    from app.community.modules.teachers.models import Teacher

    t = s.get(Teacher, teacher_id)
    if not t:
        raise NotFound("Teacher not found")
    return t


def list_teachers(s: "Session") -> list["Teacher"]:
    from app.community.modules.teachers.models import Teacher

    return s.query(Teacher).order_by(Teacher.name.asc(), Teacher.id.asc()).all()


def create_teacher(s: "Session", payload: dict, admin: "User") -> "Teacher":
    from app.community.modules.teachers.models import Teacher

    name = clean_str(payload.get("name"))
    if not name:
        raise ValidationError("Name is required.")
    code = generate_teacher_code()
    while s.query(Teacher).filter(Teacher.teacher_code == code).count():
        code = generate_teacher_code()
    teacher = Teacher(name=name, teacher_code=code, is_claimed=False)
    _apply_fields(teacher, payload, SELF_EDITABLE_FIELDS)
    s.add(teacher)
    s.flush()
    record_event(s, actor=admin, action="teacher.create", entity_type="Teacher", entity_id=str(teacher.id), metadata={"name": name})
    return teacher


def admin_update_teacher(s: "Session", teacher: "Teacher", payload: dict, admin: "User") -> "Teacher":
    if teacher.is_claimed:
        raise Forbidden("This profile has been claimed; only the teacher can edit it now.")
    changes = _apply_fields(teacher, payload, ADMIN_EDITABLE_FIELDS)
    record_event(s, actor=admin, action="teacher.edit", entity_type="Teacher", entity_id=str(teacher.id), metadata={"changes": changes})
    return teacher


def claim_teacher(s: "Session", code: str, user: "User") -> "Teacher":
    from app.community.modules.teachers.models import Teacher

    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("Teacher code is required.")
    teacher = s.query(Teacher).filter(Teacher.teacher_code == code).one_or_none()
    if not teacher:
        raise NotFound("Invalid teacher code")
    if teacher.is_claimed:
        raise Conflict("This teacher profile has already been claimed.")
    if s.query(Teacher).filter(Teacher.user_id == user.id).count():
        raise Conflict("You have already claimed a teacher profile.")
    teacher.user_id = user.id
    teacher.is_claimed = True
    teacher.claimed_at = datetime.utcnow()
    record_event(s, actor=user, action="teacher.claim", entity_type="Teacher", entity_id=str(teacher.id))
    return teacher


def my_teacher_profile(s: "Session", user: "User") -> "Teacher":
    from app.community.modules.teachers.models import Teacher

    teacher = s.query(Teacher).filter(Teacher.user_id == user.id).one_or_none()
    if not teacher:
        raise NotFound("You have not claimed a teacher profile.")
    return teacher


def self_update_teacher(s: "Session", teacher: "Teacher", payload: dict, user: "User") -> "Teacher":
    if teacher.user_id != user.id:
        raise Forbidden("You can only edit your own teacher profile.")
    changes = _apply_fields(teacher, payload, SELF_EDITABLE_FIELDS)
    record_event(s, actor=user, action="teacher.self_edit", entity_type="Teacher", entity_id=str(teacher.id), metadata={"changes": changes})
    return teacher


def _visible_reviews(s: "Session", teacher: "Teacher", include_hidden: bool):
    from app.community.modules.teachers.models import TeacherReview

    q = s.query(TeacherReview).filter(TeacherReview.teacher_id == teacher.id)
    if not include_hidden:
        q = q.filter(TeacherReview.is_moderated.is_(False))
    return q


def list_reviews(s: "Session", teacher: "Teacher", *, include_hidden: bool = False) -> list["TeacherReview"]:
    from app.community.modules.teachers.models import TeacherReview

    return _visible_reviews(s, teacher, include_hidden).order_by(TeacherReview.created_at.desc()).all()


def average_rating(s: "Session", teacher: "Teacher") -> float | None:
    from app.community.modules.teachers.models import TeacherReview

    avg = (
        s.query(func.avg(TeacherReview.rating))
        .filter(TeacherReview.teacher_id == teacher.id, TeacherReview.is_moderated.is_(False))
        .scalar()
    )
    return round(float(avg), 2) if avg is not None else None


def add_review(s: "Session", teacher: "Teacher", user: "User", payload: dict) -> "TeacherReview":
    from app.community.modules.teachers.models import TeacherReview

    rating = payload.get("rating")
    if isinstance(rating, bool):
        raise ValidationError("Rating must be an integer between 1 and 5.")
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise ValidationError("Rating must be an integer between 1 and 5.") from None
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5.")
    if teacher.user_id == user.id:
        raise Conflict("You cannot review your own teacher profile.")
    exists = (
        s.query(TeacherReview)
        .filter(TeacherReview.teacher_id == teacher.id, TeacherReview.student_id == user.id)
        .count()
    )
    if exists:
        raise Conflict("You have already reviewed this teacher.")
    review = TeacherReview(teacher_id=teacher.id, student_id=user.id, rating=rating, comment=clean_str(payload.get("comment")))
    s.add(review)
    s.flush()
    record_event(s, actor=user, action="teacher.review", entity_type="TeacherReview", entity_id=str(review.id), metadata={"teacher_id": teacher.id, "rating": rating})
    return review


def moderate_review(s: "Session", review: "TeacherReview", hidden: bool, admin: "User") -> "TeacherReview":
    review.is_moderated = hidden
    review.moderated_by_id = admin.id if hidden else None
    record_event(
        s,
        actor=admin,
        action="teacher.review_moderate",
        entity_type="TeacherReview",
        entity_id=str(review.id),
        metadata={"hidden": hidden, "teacher_id": review.teacher_id},
    )
    return review


def delete_teacher(s: "Session", teacher: "Teacher", admin: "User", *, remove_account: bool = False) -> dict:
    """
    Delete a teacher profile and its reviews. With remove_account, the claiming
    user account and everything it authored goes too.
    """
    from app.community.accounts import delete_user_account
    from app.community.models import User
    from app.community.modules.teachers.models import TeacherReview

    linked_user = s.get(User, teacher.user_id) if teacher.user_id else None
    if remove_account and linked_user is not None and linked_user.id == admin.id:
        raise Conflict("You cannot delete your own account.")
    reviews = s.query(TeacherReview).filter(TeacherReview.teacher_id == teacher.id).delete(synchronize_session=False)
    record_event(
        s,
        actor=admin,
        action="teacher.delete",
        entity_type="Teacher",
        entity_id=str(teacher.id),
        metadata={"name": teacher.name, "reviews": reviews, "remove_account": remove_account},
    )
    s.delete(teacher)
    s.flush()

    result = {"reviews": reviews, "account": None}
    if remove_account and linked_user is not None:
        result["account"] = delete_user_account(s, linked_user, admin, reason="Teacher account removed")
    return result

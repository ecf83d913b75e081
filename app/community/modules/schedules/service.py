from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.community.audit import record_event
from app.community.constants import DAYS_OF_WEEK, PERIODS, SCOPE_SECTION
from app.community.errors import Conflict, NotFound, ValidationError
from app.community.modules.scopes.service import ensure_access, get_scope
from app.community.utils import clean_str, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.community.models import User
    from app.community.modules.schedules.models import Schedule


def _slot(payload: dict) -> tuple[int, int]:
    day = parse_int(payload.get("day_of_week"), "day_of_week")
    period = parse_int(payload.get("period_number"), "period_number")
    errors = []
    if day not in DAYS_OF_WEEK:
        errors.append("day_of_week must be between 1 and 7.")
    if period not in PERIODS:
        errors.append("period_number must be between 1 and 7.")
    if errors:
        raise ValidationError(errors)
    return day, period


def _section_scope(s: "Session", scope_id: int, user: "User | None"):
    scope = get_scope(s, scope_id)
    ensure_access(s, user, scope.id)
    if scope.type != SCOPE_SECTION:
        raise ValidationError("Schedules belong to section scopes.")
    return scope


def find_slot(s: "Session", scope_id: int, day: int, period: int) -> "Schedule | None":
    from app.community.modules.schedules.models import Schedule

    return (
        s.query(Schedule)
        .filter(Schedule.scope_id == scope_id, Schedule.day_of_week == day, Schedule.period_number == period)
        .one_or_none()
    )


def get_schedule(s: "Session", schedule_id: int) -> "Schedule":
    from app.community.modules.schedules.models import Schedule

    row = s.get(Schedule, schedule_id)
    if not row:
        raise NotFound("Schedule slot not found")
    return row


def create_slot(s: "Session", payload: dict, user: "User") -> "Schedule":
    from app.community.modules.schedules.models import Schedule

    scope = _section_scope(s, parse_int(payload.get("scope_id"), "scope_id"), user)
    day, period = _slot(payload)
    if find_slot(s, scope.id, day, period):
        raise Conflict(f"Day {day}, period {period} already has a slot in this section.")
    row = Schedule(
        scope_id=scope.id,
        day_of_week=day,
        period_number=period,
        subject=clean_str(payload.get("subject")),
        teacher_name=clean_str(payload.get("teacher_name")),
    )
    s.add(row)
    s.flush()
    record_event(s, actor=user, action="schedule.create", entity_type="Schedule", entity_id=str(row.id), metadata={"scope_id": scope.id, "day": day, "period": period})
    return row


def list_slots(s: "Session", scope_id: int, user: "User | None") -> list["Schedule"]:
    from app.community.modules.schedules.models import Schedule

    scope = get_scope(s, scope_id)
    ensure_access(s, user, scope.id)
    return (
        s.query(Schedule)
        .filter(Schedule.scope_id == scope.id)
        .order_by(Schedule.day_of_week.asc(), Schedule.period_number.asc())
        .all()
    )


def update_slot(s: "Session", row: "Schedule", payload: dict, user: "User") -> "Schedule":
    ensure_access(s, user, row.scope_id)
    for field in ("subject", "teacher_name"):
        if field in payload:
            setattr(row, field, clean_str(payload.get(field)))
    row.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="schedule.edit", entity_type="Schedule", entity_id=str(row.id))
    return row


def bulk_update(s: "Session", scope_id: int, updates, user: "User") -> list["Schedule"]:
    """
    Upsert many slots at once. Existing slots are overwritten; missing slots are
    created only when they carry a subject or teacher.
    """
    from app.community.modules.schedules.models import Schedule

    scope = _section_scope(s, scope_id, user)
    if not isinstance(updates, list):
        raise ValidationError("updates must be a list of slots.")

    touched: list[Schedule] = []
    now = datetime.utcnow()
    for item in updates:
        if not isinstance(item, dict):
            raise ValidationError("Each update must be an object.")
        day, period = _slot(item)
        subject = clean_str(item.get("subject"))
        teacher_name = clean_str(item.get("teacher_name"))
        row = find_slot(s, scope.id, day, period)
        if row is None:
            if not subject and not teacher_name:
                continue
            row = Schedule(scope_id=scope.id, day_of_week=day, period_number=period, created_at=now)
            s.add(row)
        row.subject = subject
        row.teacher_name = teacher_name
        row.updated_at = now
        s.flush()
        touched.append(row)

    record_event(
        s,
        actor=user,
        action="schedule.bulk_update",
        entity_type="Scope",
        entity_id=str(scope.id),
        metadata={"slots": len(touched)},
    )
    return touched

from __future__ import annotations

from flask import Blueprint, jsonify

from app.community.db import db_session
from app.community.modules.schedules.models import Schedule
from app.community.modules.schedules.service import bulk_update, create_slot, get_schedule, list_slots, update_slot
from app.community.rbac import current_user, member, require_login, require_member
from app.community.utils import get_payload, iso

bp = Blueprint("schedules", __name__)


def schedule_json(row: Schedule) -> dict:
    return {
        "id": row.id,
        "scope_id": row.scope_id,
        "day_of_week": row.day_of_week,
        "period_number": row.period_number,
        "subject": row.subject,
        "teacher_name": row.teacher_name,
        "updated_at": iso(row.updated_at),
    }


@bp.post("/schedules")
@require_member
def schedules_create():
    s = db_session()
    row = create_slot(s, get_payload(), member())
    s.commit()
    return jsonify(schedule_json(row)), 201


@bp.get("/schedules/<int:scope_id>")
@require_login
def schedules_for_scope(scope_id: int):
    s = db_session()
    return jsonify([schedule_json(r) for r in list_slots(s, scope_id, current_user())])


@bp.patch("/schedules/<int:schedule_id>")
@require_member
def schedules_update(schedule_id: int):
    s = db_session()
    row = get_schedule(s, schedule_id)
    update_slot(s, row, get_payload(), member())
    s.commit()
    return jsonify(schedule_json(row))


@bp.route("/schedules/<int:scope_id>/bulk", methods=["PUT", "PATCH"])
@require_member
def schedules_bulk(scope_id: int):
    s = db_session()
    rows = bulk_update(s, scope_id, get_payload().get("updates"), member())
    s.commit()
    return jsonify([schedule_json(r) for r in rows])

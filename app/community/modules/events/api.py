from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.community.db import db_session
from app.community.models import User
from app.community.modules.events.models import Event, EventComment, EventRsvp
from app.community.modules.events.service import (
    add_event_comment,
    create_event,
    delete_event,
    get_event,
    get_readable_event,
    list_event_comments,
    list_events,
    list_rsvps,
    rsvp_counts,
    rsvpd_event_ids,
    toggle_rsvp,
    update_event,
    user_rsvps,
)
from app.community.modules.profiles.service import author_summaries
from app.community.rbac import current_user, member, require_login, require_member
from app.community.utils import get_payload, iso, parse_scope_id

bp = Blueprint("events", __name__)


def event_json(ev: Event, *, rsvp_count: int, user_has_rsvpd: bool, creator: dict | None) -> dict:
    return {
        "id": ev.id,
        "title": ev.title,
        "description": ev.description,
        "event_type": ev.event_type,
        "scope_id": ev.scope_id,
        "start_time": iso(ev.start_time),
        "end_time": iso(ev.end_time),
        "location": ev.location,
        "image_url": ev.image_url,
        "created_by_id": ev.created_by_id,
        "created_at": iso(ev.created_at),
        "updated_at": iso(ev.updated_at),
        "rsvp_count": rsvp_count,
        "user_has_rsvpd": user_has_rsvpd,
        "creator": creator,
    }


def _render_events(s, events: list[Event], user: User | None) -> list[dict]:
    ids = [e.id for e in events]
    counts = rsvp_counts(s, ids)
    mine = rsvpd_event_ids(s, user, ids)
    creators = author_summaries(s, [e.created_by_id for e in events])
    return [
        event_json(e, rsvp_count=counts.get(e.id, 0), user_has_rsvpd=e.id in mine, creator=creators.get(e.created_by_id))
        for e in events
    ]


def rsvp_json(r: EventRsvp) -> dict:
    return {"id": r.id, "event_id": r.event_id, "user_id": r.user_id, "created_at": iso(r.created_at)}


def comment_json(c: EventComment, author: dict | None) -> dict:
    return {
        "id": c.id,
        "event_id": c.event_id,
        "author_id": c.author_id,
        "content": c.content,
        "created_at": iso(c.created_at),
        "author": author,
    }


@bp.get("/events")
@require_login
def events_list():
    s = db_session()
    u = current_user()
    filtered = "scope_id" in request.args
    scope_id = parse_scope_id(request.args.get("scope_id")) if filtered else None
    events = list_events(s, u, scope_id, filtered=filtered)
    return jsonify(_render_events(s, events, u))


@bp.post("/events")
@require_member
def events_create():
    s = db_session()
    u = member()
    ev = create_event(s, get_payload(), u)
    s.commit()
    return jsonify(_render_events(s, [ev], u)[0]), 201


@bp.get("/events/<int:event_id>")
@require_login
def event_detail(event_id: int):
    s = db_session()
    u = current_user()
    ev = get_readable_event(s, event_id, u)
    return jsonify(_render_events(s, [ev], u)[0])


@bp.patch("/events/<int:event_id>")
@require_member
def event_update(event_id: int):
    s = db_session()
    u = member()
    ev = get_event(s, event_id)
    update_event(s, ev, get_payload(), u)
    s.commit()
    return jsonify(_render_events(s, [ev], u)[0])


@bp.delete("/events/<int:event_id>")
@require_member
def event_delete(event_id: int):
    s = db_session()
    u = member()
    ev = get_event(s, event_id)
    delete_event(s, ev, u)
    s.commit()
    return jsonify({"success": True})


@bp.post("/events/<int:event_id>/rsvp")
@require_member
def event_rsvp(event_id: int):
    s = db_session()
    u = member()
    ev = get_readable_event(s, event_id, u)
    attending = toggle_rsvp(s, ev, u)
    s.commit()
    return jsonify({"attending": attending, "rsvp_count": rsvp_counts(s, [ev.id]).get(ev.id, 0)})


@bp.get("/events/<int:event_id>/rsvps")
@require_login
def event_rsvps(event_id: int):
    s = db_session()
    ev = get_readable_event(s, event_id, current_user())
    return jsonify([rsvp_json(r) for r in list_rsvps(s, ev)])


@bp.get("/events/<int:event_id>/attendees")
@require_login
def event_attendees(event_id: int):
    s = db_session()
    ev = get_readable_event(s, event_id, current_user())
    rsvps = list_rsvps(s, ev)
    people = author_summaries(s, [r.user_id for r in rsvps])
    return jsonify([people[r.user_id] for r in rsvps if r.user_id in people])


@bp.get("/rsvps")
@require_member
def my_rsvps():
    s = db_session()
    return jsonify([rsvp_json(r) for r in user_rsvps(s, member())])


@bp.get("/events/<int:event_id>/comments")
@require_login
def event_comments_list(event_id: int):
    s = db_session()
    ev = get_readable_event(s, event_id, current_user())
    comments = list_event_comments(s, ev)
    authors = author_summaries(s, [c.author_id for c in comments])
    return jsonify([comment_json(c, authors.get(c.author_id)) for c in comments])


@bp.post("/events/<int:event_id>/comments")
@require_member
def event_comments_create(event_id: int):
    s = db_session()
    u = member()
    ev = get_readable_event(s, event_id, u)
    c = add_event_comment(s, ev, u, get_payload().get("content"))
    s.commit()
    return jsonify(comment_json(c, author_summaries(s, [u.id]).get(u.id))), 201

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from app.community.audit import record_event
from app.community.constants import EVENT_TYPES
from app.community.errors import Forbidden, NotFound, ValidationError
from app.community.modules.profiles.service import calculate_reputation
from app.community.modules.scopes.service import accessible_scope_ids, ensure_access, normalize_scope_id
from app.community.utils import clean_str, parse_datetime, parse_scope_id

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.community.models import User
    from app.community.modules.events.models import Event, EventComment, EventRsvp


def validate_event_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate event creation/update payload. Returns list of errors."""
    errors: list[str] = []
    title = (str(payload.get("title") or "")).strip()
    if not partial or "title" in payload:
        if not title:
            errors.append("Title is required.")
    event_type = (str(payload.get("event_type") or "")).strip().lower()
    if not partial or "event_type" in payload:
        if event_type not in EVENT_TYPES:
            errors.append(f"Invalid event_type. Must be one of: {', '.join(EVENT_TYPES)}")
    try:
        start = parse_datetime(payload.get("start_time"), "start_time", required=not partial)
        end = parse_datetime(payload.get("end_time"), "end_time", required=False)
    except ValidationError as e:
        errors.extend(e.errors)
        return errors
    if start and end and end < start:
        errors.append("end_time must be after start_time.")
    return errors


def get_event(s: "Session", event_id: int) -> "Event":
    from app.community.modules.events.models import Event

    ev = s.get(Event, event_id)
    if not ev:
        raise NotFound("Event not found")
    return ev


def get_readable_event(s: "Session", event_id: int, user: "User | None") -> "Event":
    ev = get_event(s, event_id)
    ensure_access(s, user, ev.scope_id)
    return ev


def ensure_creator_or_admin(ev: "Event", user: "User") -> None:
    if ev.created_by_id != user.id and not user.is_admin:
        raise Forbidden("Only the event creator or an admin can change this event")


def create_event(s: "Session", payload: dict, user: "User") -> "Event":
    from app.community.modules.events.models import Event

    errors = validate_event_payload(payload)
    if errors:
        raise ValidationError(errors)
    scope_id = parse_scope_id(payload.get("scope_id"))
    ensure_access(s, user, scope_id)

    now = datetime.utcnow()
    ev = Event(
        title=str(payload["title"]).strip(),
        description=clean_str(payload.get("description")),
        event_type=str(payload["event_type"]).strip().lower(),
        scope_id=normalize_scope_id(s, scope_id),
        start_time=parse_datetime(payload.get("start_time"), "start_time"),
        end_time=parse_datetime(payload.get("end_time"), "end_time", required=False),
        location=clean_str(payload.get("location")),
        image_url=clean_str(payload.get("image_url")),
        created_by_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(ev)
    s.flush()
    record_event(
        s,
        actor=user,
        action="event.create",
        entity_type="Event",
        entity_id=str(ev.id),
        metadata={"title": ev.title, "scope_id": ev.scope_id, "event_type": ev.event_type},
    )
    return ev


def list_events(s: "Session", user: "User | None", scope_id: int | None, *, filtered: bool) -> list["Event"]:
    """
    filtered=True lists one scope (None = school-wide); otherwise every event
    the principal can read.
    """
    from app.community.modules.events.models import Event

    q = s.query(Event)
    if filtered:
        ensure_access(s, user, scope_id)
        scope_id = normalize_scope_id(s, scope_id)
        q = q.filter(Event.scope_id.is_(None)) if scope_id is None else q.filter(Event.scope_id == scope_id)
    else:
        allowed = accessible_scope_ids(s, user)
        if allowed is not None:
            q = q.filter(or_(Event.scope_id.is_(None), Event.scope_id.in_(allowed or [-1])))
    return q.order_by(Event.start_time.asc(), Event.id.asc()).all()


def update_event(s: "Session", ev: "Event", payload: dict, user: "User") -> "Event":
    ensure_creator_or_admin(ev, user)
    errors = validate_event_payload(payload, partial=True)
    if errors:
        raise ValidationError(errors)

    changes: dict[str, dict] = {}
    if "title" in payload:
        ev.title = str(payload["title"]).strip()
        changes["title"] = {"new": ev.title}
    if "event_type" in payload:
        ev.event_type = str(payload["event_type"]).strip().lower()
        changes["event_type"] = {"new": ev.event_type}
    for field in ("description", "location", "image_url"):
        if field in payload:
            setattr(ev, field, clean_str(payload.get(field)))
            changes[field] = {"new": getattr(ev, field)}
    if "start_time" in payload:
        ev.start_time = parse_datetime(payload.get("start_time"), "start_time")
        changes["start_time"] = {"new": ev.start_time.isoformat()}
    if "end_time" in payload:
        ev.end_time = parse_datetime(payload.get("end_time"), "end_time", required=False)
    if ev.end_time and ev.end_time < ev.start_time:
        raise ValidationError("end_time must be after start_time.")
    ev.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="event.edit", entity_type="Event", entity_id=str(ev.id), metadata={"changes": changes})
    return ev


def purge_event(s: "Session", ev: "Event") -> list[int]:
    """Delete an event with its RSVPs and comments. Returns ids of users who had RSVP'd."""
    from app.community.modules.events.models import EventComment, EventRsvp

    attendee_ids = [r[0] for r in s.query(EventRsvp.user_id).filter(EventRsvp.event_id == ev.id).all()]
    s.query(EventRsvp).filter(EventRsvp.event_id == ev.id).delete(synchronize_session=False)
    s.query(EventComment).filter(EventComment.event_id == ev.id).delete(synchronize_session=False)
    s.delete(ev)
    return attendee_ids


def delete_event(s: "Session", ev: "Event", user: "User") -> None:
    from app.community.models import User

    ensure_creator_or_admin(ev, user)
    record_event(
        s,
        actor=user,
        action="event.delete",
        entity_type="Event",
        entity_id=str(ev.id),
        metadata={"title": ev.title, "created_by_id": ev.created_by_id},
    )
    attendee_ids = purge_event(s, ev)
    s.flush()
    for attendee in s.query(User).filter(User.id.in_(attendee_ids)).all() if attendee_ids else []:
        calculate_reputation(s, attendee)


def find_rsvp(s: "Session", event_id: int, user_id: int) -> "EventRsvp | None":
    from app.community.modules.events.models import EventRsvp

    return (
        s.query(EventRsvp)
        .filter(EventRsvp.event_id == event_id, EventRsvp.user_id == user_id)
        .one_or_none()
    )


def toggle_rsvp(s: "Session", ev: "Event", user: "User") -> bool:
    """Returns True when the user is now attending."""
    from app.community.modules.events.models import EventRsvp

    existing = find_rsvp(s, ev.id, user.id)
    if existing:
        s.delete(existing)
        attending = False
    else:
        s.add(EventRsvp(event_id=ev.id, user_id=user.id))
        attending = True
    try:
        s.flush()
    except IntegrityError:
        # A concurrent RSVP by the same user won the insert; keep it.
        s.rollback()
    calculate_reputation(s, user)
    return attending


def rsvp_counts(s: "Session", event_ids: list[int]) -> dict[int, int]:
    from app.community.modules.events.models import EventRsvp

    if not event_ids:
        return {}
    rows = (
        s.query(EventRsvp.event_id, func.count(EventRsvp.id))
        .filter(EventRsvp.event_id.in_(event_ids))
        .group_by(EventRsvp.event_id)
        .all()
    )
    return {eid: int(n) for eid, n in rows}


def rsvpd_event_ids(s: "Session", user: "User | None", event_ids: list[int]) -> set[int]:
    from app.community.modules.events.models import EventRsvp

    if user is None or not event_ids:
        return set()
    rows = (
        s.query(EventRsvp.event_id)
        .filter(EventRsvp.user_id == user.id, EventRsvp.event_id.in_(event_ids))
        .all()
    )
    return {r[0] for r in rows}


def list_rsvps(s: "Session", ev: "Event") -> list["EventRsvp"]:
    from app.community.modules.events.models import EventRsvp

    return s.query(EventRsvp).filter(EventRsvp.event_id == ev.id).order_by(EventRsvp.created_at.asc()).all()


def user_rsvps(s: "Session", user: "User") -> list["EventRsvp"]:
    from app.community.modules.events.models import EventRsvp

    return s.query(EventRsvp).filter(EventRsvp.user_id == user.id).order_by(EventRsvp.created_at.desc()).all()


def add_event_comment(s: "Session", ev: "Event", user: "User", content) -> "EventComment":
    from app.community.modules.events.models import EventComment

    content = (str(content or "")).strip()
    if not content:
        raise ValidationError("Content is required.")
    c = EventComment(event_id=ev.id, author_id=user.id, content=content)
    s.add(c)
    s.flush()
    return c


def list_event_comments(s: "Session", ev: "Event") -> list["EventComment"]:
    from app.community.modules.events.models import EventComment

    return (
        s.query(EventComment)
        .filter(EventComment.event_id == ev.id)
        .order_by(EventComment.created_at.asc(), EventComment.id.asc())
        .all()
    )

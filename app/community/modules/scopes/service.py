from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from app.community.audit import record_event
from app.community.constants import GRADES, SCOPE_GLOBAL, SCOPE_GRADE, SCOPE_SECTION, SCOPE_TYPES
from app.community.errors import Conflict, Forbidden, InvalidCode, NotFound, ValidationError
from app.community.security import codes_match

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.community.models import User
    from app.community.modules.scopes.models import DigitalKey, Scope

logger = logging.getLogger(__name__)

ACCESS_CODE_RE = re.compile(r"^[A-Za-z0-9]+$")
SECTION_NAME_RE = re.compile(r"^(\d+)-([A-E])$")


def get_global_scope(s: "Session") -> "Scope | None":
    from app.community.modules.scopes.models import Scope

    return s.query(Scope).filter(Scope.type == SCOPE_GLOBAL).order_by(Scope.id.asc()).first()


def get_scope(s: "Session", scope_id: int) -> "Scope":
    from app.community.modules.scopes.models import Scope

    scope = s.get(Scope, scope_id)
    if not scope:
        raise NotFound("Scope not found")
    return scope


def is_global(s: "Session", scope_id: int | None) -> bool:
    if scope_id is None:
        return True
    scope = get_scope(s, scope_id)
    return scope.type == SCOPE_GLOBAL


def normalize_scope_id(s: "Session", scope_id: int | None) -> int | None:
    """Content in the global scope is stored with scope_id NULL."""
    if scope_id is None or is_global(s, scope_id):
        return None
    return scope_id


def find_key(s: "Session", user_id: int, scope_id: int) -> "DigitalKey | None":
    from app.community.modules.scopes.models import DigitalKey

    return (
        s.query(DigitalKey)
        .filter(DigitalKey.user_id == user_id, DigitalKey.scope_id == scope_id)
        .one_or_none()
    )


def has_access(s: "Session", user: "User | None", scope_id: int | None) -> bool:
    """
    Scope resolver. user=None is a visitor session.

    Global content (scope_id None or the global scope) is open to every principal;
    admins reach every scope; everyone else needs a DigitalKey.
    Raises NotFound for an unknown scope id.
    """
    if is_global(s, scope_id):
        return True
    if user is None:
        return False
    if user.is_admin:
        return True
    return find_key(s, user.id, scope_id) is not None


def ensure_access(s: "Session", user: "User | None", scope_id: int | None) -> None:
    if not has_access(s, user, scope_id):
        raise Forbidden("You don't have access to this scope. Unlock it with its access code first.", extra={"scope_id": scope_id})


def accessible_scope_ids(s: "Session", user: "User | None") -> set[int] | None:
    """Non-global scope ids the principal may read; None means all (admin)."""
    from app.community.modules.scopes.models import DigitalKey

    if user is None:
        return set()
    if user.is_admin:
        return None
    rows = s.query(DigitalKey.scope_id).filter(DigitalKey.user_id == user.id).all()
    return {r[0] for r in rows}


def list_keys(s: "Session", user: "User") -> list["DigitalKey"]:
    from app.community.modules.scopes.models import DigitalKey

    return s.query(DigitalKey).filter(DigitalKey.user_id == user.id).order_by(DigitalKey.unlocked_at.asc()).all()


def unlock(s: "Session", user: "User", scope_id: int, code: str) -> tuple["DigitalKey | None", str, bool]:
    """
    Verify an access code and persist a DigitalKey.

    Returns (key, message, created). Unlocking twice is a no-op returning the existing key.
    Raises NotFound for an unknown scope and InvalidCode for a wrong code.
    """
    from app.community.modules.scopes.models import DigitalKey

    scope = get_scope(s, scope_id)
    if scope.type == SCOPE_GLOBAL:
        return None, "The public square is open to everyone", False

    existing = find_key(s, user.id, scope.id)
    if existing:
        return existing, "You already have access to this scope", False

    if not codes_match(code, scope.access_code):
        record_event(
            s,
            actor=user,
            action="scope.unlock_failed",
            entity_type="Scope",
            entity_id=str(scope.id),
            reason="Incorrect access code",
        )
        s.commit()
        raise InvalidCode("Incorrect access code")

    key = DigitalKey(user_id=user.id, scope_id=scope.id)
    s.add(key)
    try:
        s.flush()
    except IntegrityError:
        # Concurrent unlock of the same scope won the insert; return its key.
        s.rollback()
        existing = find_key(s, user.id, scope.id)
        if existing is None:
            raise
        return existing, "You already have access to this scope", False

    record_event(
        s,
        actor=user,
        action="scope.unlock",
        entity_type="Scope",
        entity_id=str(scope.id),
        metadata={"scope": scope.name, "key_id": key.id},
    )
    logger.info("Scope unlocked: user_id=%s scope_id=%s", user.id, scope.id)
    return key, "Access granted! Digital key saved to your profile.", True


def validate_scope_payload(s: "Session", payload: dict) -> list[str]:
    """Validate scope creation payload. Returns list of errors."""
    from app.community.modules.scopes.models import Scope

    errors: list[str] = []
    scope_type = (payload.get("type") or "").strip().lower()
    name = (payload.get("name") or "").strip()
    code = (payload.get("access_code") or "").strip()

    if scope_type not in SCOPE_TYPES:
        return [f"Invalid type. Must be one of: {', '.join(SCOPE_TYPES)}"]

    if scope_type == SCOPE_GLOBAL:
        if s.query(Scope).filter(Scope.type == SCOPE_GLOBAL).count():
            errors.append("A global scope already exists.")
        return errors

    if not name:
        errors.append("Name is required.")
    if not code:
        errors.append("Access code is required.")
    elif not ACCESS_CODE_RE.match(code):
        errors.append("Access code must contain only letters and numbers.")

    if scope_type == SCOPE_GRADE:
        grade = payload.get("grade_number")
        try:
            grade = int(grade)
        except (TypeError, ValueError):
            errors.append("Grade number is required for grade scopes.")
            return errors
        if grade not in GRADES:
            errors.append("Grade number must be between 1 and 6.")
        elif s.query(Scope).filter(Scope.type == SCOPE_GRADE, Scope.grade_number == grade).count():
            errors.append(f"Grade {grade} already exists.")

    if scope_type == SCOPE_SECTION:
        section = (payload.get("section_name") or "").strip().upper()
        m = SECTION_NAME_RE.match(section)
        if not m:
            errors.append("Section name must look like '3-B' (grade, dash, letter A-E).")
            return errors
        grade = int(m.group(1))
        if not s.query(Scope).filter(Scope.type == SCOPE_GRADE, Scope.grade_number == grade).count():
            errors.append(f"Grade {grade} must exist before adding its sections.")
        if s.query(Scope).filter(Scope.type == SCOPE_SECTION, Scope.section_name == section).count():
            errors.append(f"Section {section} already exists.")
    return errors


def create_scope(s: "Session", payload: dict, user: "User | None") -> "Scope":
    from app.community.modules.scopes.models import Scope

    errors = validate_scope_payload(s, payload)
    if errors:
        # Duplicates are conflicts, malformed input is a validation error.
        if any("already exists" in e for e in errors):
            raise Conflict("; ".join(errors))
        raise ValidationError(errors)

    scope_type = payload["type"].strip().lower()
    if scope_type == SCOPE_GLOBAL:
        scope = Scope(name=(payload.get("name") or "Public Square").strip(), type=SCOPE_GLOBAL)
    elif scope_type == SCOPE_GRADE:
        scope = Scope(
            name=payload["name"].strip(),
            type=SCOPE_GRADE,
            grade_number=int(payload["grade_number"]),
            access_code=payload["access_code"].strip(),
        )
    else:
        scope = Scope(
            name=payload["name"].strip(),
            type=SCOPE_SECTION,
            section_name=payload["section_name"].strip().upper(),
            access_code=payload["access_code"].strip(),
        )
    s.add(scope)
    s.flush()

    record_event(
        s,
        actor=user,
        action="scope.create",
        entity_type="Scope",
        entity_id=str(scope.id),
        metadata={"name": scope.name, "type": scope.type},
    )
    return scope


def scope_dependents(s: "Session", scope: "Scope") -> list[str]:
    """Human-readable reasons this scope cannot be deleted."""
    from app.community.modules.events.models import Event
    from app.community.modules.posts.models import Post
    from app.community.modules.schedules.models import Schedule
    from app.community.modules.scopes.models import DigitalKey, Scope
    from app.community.modules.study_sources.models import StudySource

    reasons: list[str] = []
    if scope.type == SCOPE_GRADE and scope.grade_number is not None:
        prefix = f"{scope.grade_number}-"
        sections = (
            s.query(Scope)
            .filter(Scope.type == SCOPE_SECTION, Scope.section_name.like(f"{prefix}%"))
            .count()
        )
        if sections:
            reasons.append(f"{sections} section(s) depend on this grade")
    checks = (
        (DigitalKey, DigitalKey.scope_id, "digital key(s)"),
        (Post, Post.scope_id, "post(s)"),
        (Event, Event.scope_id, "event(s)"),
        (Schedule, Schedule.scope_id, "schedule slot(s)"),
        (StudySource, StudySource.scope_id, "study source(s)"),
    )
    for model, column, label in checks:
        n = s.query(model).filter(column == scope.id).count()
        if n:
            reasons.append(f"{n} {label} reference this scope")
    return reasons


def delete_scope(s: "Session", scope: "Scope", user: "User") -> None:
    if scope.type == SCOPE_GLOBAL:
        raise Conflict("The global scope cannot be deleted.")
    reasons = scope_dependents(s, scope)
    if reasons:
        raise Conflict(f"Cannot delete scope: {'; '.join(reasons)}.", extra={"reasons": reasons})
    record_event(
        s,
        actor=user,
        action="scope.delete",
        entity_type="Scope",
        entity_id=str(scope.id),
        metadata={"name": scope.name, "type": scope.type},
    )
    s.delete(scope)

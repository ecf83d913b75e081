import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.community.models import AuditEvent, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper. Safe to call outside a request (scripts).
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = AuditEvent(
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_username=actor.username if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev

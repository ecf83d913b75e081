from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from werkzeug.utils import secure_filename

from app.community.audit import record_event
from app.community.constants import STUDY_SOURCE_EXTENSIONS
from app.community.errors import Forbidden, NotFound, ValidationError
from app.community.modules.scopes.service import ensure_access, normalize_scope_id
from app.community.utils import clean_str, parse_scope_id

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.community.models import User
    from app.community.modules.study_sources.models import StudySource

logger = logging.getLogger(__name__)


def get_source(s: "Session", source_id: int) -> "StudySource":
    from app.community.modules.study_sources.models import StudySource

    src = s.get(StudySource, source_id)
    if not src:
        raise NotFound("Study source not found")
    return src


def list_sources(s: "Session", user: "User | None", scope_id: int | None, subject: str | None = None) -> list["StudySource"]:
    from app.community.modules.study_sources.models import StudySource

    ensure_access(s, user, scope_id)
    scope_id = normalize_scope_id(s, scope_id)
    q = s.query(StudySource)
    q = q.filter(StudySource.scope_id.is_(None)) if scope_id is None else q.filter(StudySource.scope_id == scope_id)
    if subject:
        q = q.filter(StudySource.subject == subject)
    return q.order_by(StudySource.created_at.desc(), StudySource.id.desc()).all()


def upload_source(
    s: "Session",
    payload: dict,
    file_bytes: bytes,
    filename: str,
    content_type: str,
    user: "User",
) -> "StudySource":
    """Store the file and record its metadata. Subject and a non-empty file are required."""
    from flask import current_app

    from app.community.modules.study_sources.models import StudySource
    from app.community.storage import build_storage_key, file_digest_and_size, file_extension, storage_from_config

    errors: list[str] = []
    subject = clean_str(payload.get("subject"))
    if not subject:
        errors.append("Subject is required.")
    safe_name = secure_filename(filename or "")
    if not safe_name:
        errors.append("A file is required.")
    elif file_extension(safe_name) not in STUDY_SOURCE_EXTENSIONS:
        errors.append(f"File type not allowed. Allowed: {', '.join(sorted(STUDY_SOURCE_EXTENSIONS))}")
    if not file_bytes:
        errors.append("File is empty.")
    max_bytes = int(current_app.config.get("STUDY_SOURCE_MAX_BYTES") or 0)
    if max_bytes and len(file_bytes) > max_bytes:
        errors.append(f"File exceeds {max_bytes // (1024 * 1024)}MB limit.")
    if errors:
        raise ValidationError(errors)

    scope_id = parse_scope_id(payload.get("scope_id"))
    ensure_access(s, user, scope_id)
    scope_id = normalize_scope_id(s, scope_id)

    sha256, size = file_digest_and_size(file_bytes)
    key = build_storage_key("study-sources", user.id, safe_name)

    src = StudySource(
        author_id=user.id,
        scope_id=scope_id,
        subject=subject,
        title=clean_str(payload.get("title")) or safe_name,
        description=clean_str(payload.get("description")),
        file_name=safe_name,
        storage_key=key,
        file_size=size,
        file_type=content_type,
        sha256=sha256,
    )
    s.add(src)
    s.flush()
    # Row first, so a failed insert never leaves a file behind.
    storage_from_config(current_app.config).put_bytes(key, file_bytes, content_type=content_type)
    record_event(
        s,
        actor=user,
        action="study_source.upload",
        entity_type="StudySource",
        entity_id=str(src.id),
        metadata={"subject": subject, "filename": safe_name, "scope_id": scope_id, "size": size},
    )
    return src


def delete_source(s: "Session", src: "StudySource", user: "User") -> None:
    from flask import current_app

    from app.community.storage import StorageError, storage_from_config

    if src.author_id != user.id and not user.is_admin:
        raise Forbidden("Only the uploader or an admin can delete this study source")
    key = src.storage_key
    record_event(
        s,
        actor=user,
        action="study_source.delete",
        entity_type="StudySource",
        entity_id=str(src.id),
        metadata={"filename": src.file_name, "author_id": src.author_id},
    )
    s.delete(src)
    s.flush()
    try:
        storage_from_config(current_app.config).delete(key)
    except StorageError as e:
        logger.warning("Could not delete stored file %s for study source %s: %s", key, src.id, e)

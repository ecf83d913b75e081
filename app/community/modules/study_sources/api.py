from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, send_file

from app.community.db import db_session
from app.community.errors import NotFound
from app.community.modules.profiles.service import author_summaries
from app.community.modules.scopes.service import ensure_access
from app.community.modules.study_sources.models import StudySource
from app.community.modules.study_sources.service import delete_source, get_source, list_sources, upload_source
from app.community.rbac import current_user, member, require_login, require_member
from app.community.storage import StorageError, discard_upload, storage_from_config
from app.community.utils import clean_str, iso, parse_scope_id

bp = Blueprint("study_sources", __name__)


def source_json(src: StudySource, author: dict | None) -> dict:
    return {
        "id": src.id,
        "author_id": src.author_id,
        "scope_id": src.scope_id,
        "subject": src.subject,
        "title": src.title,
        "description": src.description,
        "file_name": src.file_name,
        "file_url": f"/api/study-sources/{src.id}/file",
        "file_size": src.file_size,
        "file_type": src.file_type,
        "created_at": iso(src.created_at),
        "author": author,
    }


@bp.get("/study-sources")
@require_login
def sources_list():
    s = db_session()
    scope_id = parse_scope_id(request.args.get("scope_id"))
    sources = list_sources(s, current_user(), scope_id, clean_str(request.args.get("subject")))
    authors = author_summaries(s, [src.author_id for src in sources])
    return jsonify([source_json(src, authors.get(src.author_id)) for src in sources])


@bp.post("/study-sources")
@require_member
def sources_upload():
    s = db_session()
    u = member()
    f = request.files.get("file")
    file_bytes = f.read() if f and f.filename else b""
    filename = f.filename if f else ""
    content_type = ((f.mimetype if f else None) or "application/octet-stream").strip()
    src = upload_source(s, request.form.to_dict(), file_bytes, filename or "", content_type, u)
    key = src.storage_key
    try:
        s.commit()
    except Exception:
        discard_upload(storage_from_config(current_app.config), key)
        raise
    return jsonify(source_json(src, author_summaries(s, [u.id]).get(u.id))), 201


@bp.delete("/study-sources/<int:source_id>")
@require_member
def sources_delete(source_id: int):
    s = db_session()
    src = get_source(s, source_id)
    delete_source(s, src, member())
    s.commit()
    return jsonify({"success": True})


@bp.get("/study-sources/<int:source_id>/file")
@require_login
def sources_download(source_id: int):
    s = db_session()
    src = get_source(s, source_id)
    ensure_access(s, current_user(), src.scope_id)
    try:
        fobj = storage_from_config(current_app.config).open(src.storage_key)
    except StorageError:
        current_app.logger.error("Study source missing from storage: id=%s key=%s", src.id, src.storage_key)
        raise NotFound("File not found") from None
    return send_file(
        fobj,
        mimetype=src.file_type,
        as_attachment=True,
        download_name=src.file_name,
        max_age=0,
    )

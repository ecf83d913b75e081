from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, send_file

from app.community.db import db_session
from app.community.errors import NotFound, ValidationError
from app.community.models import User
from app.community.modules.posts.models import Post, PostComment
from app.community.modules.posts.service import (
    add_comment,
    create_post,
    delete_post,
    get_post,
    get_readable_post,
    liked_post_ids,
    list_comments,
    list_posts,
    my_accuracy_ratings,
    rate_accuracy,
    set_post_credibility,
    toggle_like,
    update_post,
)
from app.community.modules.profiles.service import author_summaries
from app.community.rbac import current_user, member, require_admin, require_login, require_member
from app.community.storage import StorageError, discard_upload, storage_from_config
from app.community.utils import get_payload, iso, parse_int, parse_scope_id

bp = Blueprint("posts", __name__)


def post_json(p: Post, *, author: dict | None, is_liked: bool, my_rating: int | None) -> dict:
    return {
        "id": p.id,
        "author_id": p.author_id,
        "scope_id": p.scope_id,
        "content": p.content,
        "media_url": f"/api/posts/{p.id}/media" if p.media_storage_key else None,
        "media_type": p.media_type,
        "credibility_rating": p.credibility_rating,
        "likes_count": p.likes_count,
        "comments_count": p.comments_count,
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
        "author": author,
        "is_liked_by_current_user": is_liked,
        "current_user_accuracy_rating": my_rating,
    }


def _render_posts(s, posts: list[Post], user: User | None) -> list[dict]:
    ids = [p.id for p in posts]
    authors = author_summaries(s, [p.author_id for p in posts])
    liked = liked_post_ids(s, user, ids)
    ratings = my_accuracy_ratings(s, user, ids)
    return [
        post_json(p, author=authors.get(p.author_id), is_liked=p.id in liked, my_rating=ratings.get(p.id))
        for p in posts
    ]


def comment_json(c: PostComment, author: dict | None) -> dict:
    return {
        "id": c.id,
        "post_id": c.post_id,
        "author_id": c.author_id,
        "content": c.content,
        "created_at": iso(c.created_at),
        "author": author,
    }


@bp.get("/posts")
@require_login
def posts_list():
    s = db_session()
    u = current_user()
    scope_id = parse_scope_id(request.args.get("scope_id"))
    limit = max(1, min(parse_int(request.args.get("limit"), "limit", required=False) or 100, 200))
    offset = max(parse_int(request.args.get("offset"), "offset", required=False) or 0, 0)
    posts = list_posts(s, u, scope_id, limit=limit, offset=offset)
    return jsonify(_render_posts(s, posts, u))


@bp.post("/posts")
@require_member
def posts_create():
    s = db_session()
    u = member()
    payload = get_payload()
    media = None
    f = request.files.get("media")
    if f and f.filename:
        media = (f.read(), f.filename, (f.mimetype or "application/octet-stream").strip())
    post = create_post(s, payload, u, media=media)
    media_key = post.media_storage_key
    try:
        s.commit()
    except Exception:
        if media_key:
            discard_upload(storage_from_config(current_app.config), media_key)
        raise
    return jsonify(_render_posts(s, [post], u)[0]), 201


@bp.get("/posts/<int:post_id>")
@require_login
def post_detail(post_id: int):
    s = db_session()
    u = current_user()
    post = get_readable_post(s, post_id, u)
    return jsonify(_render_posts(s, [post], u)[0])


@bp.patch("/posts/<int:post_id>")
@require_member
def post_update(post_id: int):
    s = db_session()
    u = member()
    post = get_post(s, post_id)
    update_post(s, post, get_payload(), u)
    s.commit()
    return jsonify(_render_posts(s, [post], u)[0])


@bp.delete("/posts/<int:post_id>")
@require_member
def post_delete(post_id: int):
    s = db_session()
    u = member()
    post = get_post(s, post_id)
    delete_post(s, post, u)
    s.commit()
    return jsonify({"success": True})


@bp.patch("/posts/<int:post_id>/credibility")
@require_admin
def post_credibility(post_id: int):
    s = db_session()
    u = member()
    post = get_post(s, post_id)
    payload = get_payload()
    if "credibility_rating" not in payload:
        raise ValidationError("credibility_rating is required.")
    set_post_credibility(s, post, payload.get("credibility_rating"), u)
    s.commit()
    return jsonify(_render_posts(s, [post], u)[0])


@bp.post("/posts/<int:post_id>/like")
@require_member
def post_like(post_id: int):
    s = db_session()
    u = member()
    post = get_readable_post(s, post_id, u)
    liked = toggle_like(s, post, u)
    s.commit()
    return jsonify({"liked": liked, "likes_count": post.likes_count})


@bp.get("/posts/<int:post_id>/like-status")
@require_login
def post_like_status(post_id: int):
    s = db_session()
    u = current_user()
    post = get_readable_post(s, post_id, u)
    return jsonify({"liked": post.id in liked_post_ids(s, u, [post.id]), "likes_count": post.likes_count})


@bp.post("/posts/<int:post_id>/rate-accuracy")
@require_member
def post_rate_accuracy(post_id: int):
    s = db_session()
    u = member()
    post = get_readable_post(s, post_id, u)
    row = rate_accuracy(s, post, u, get_payload().get("rating"))
    s.commit()
    return jsonify({"success": True, "post_id": post.id, "rating": row.rating})


@bp.get("/posts/<int:post_id>/comments")
@require_login
def post_comments_list(post_id: int):
    s = db_session()
    post = get_readable_post(s, post_id, current_user())
    comments = list_comments(s, post)
    authors = author_summaries(s, [c.author_id for c in comments])
    return jsonify([comment_json(c, authors.get(c.author_id)) for c in comments])


@bp.post("/posts/<int:post_id>/comments")
@require_member
def post_comments_create(post_id: int):
    s = db_session()
    u = member()
    post = get_readable_post(s, post_id, u)
    comment = add_comment(s, post, u, get_payload().get("content"))
    s.commit()
    return jsonify(comment_json(comment, author_summaries(s, [u.id]).get(u.id))), 201


@bp.get("/posts/<int:post_id>/media")
@require_login
def post_media(post_id: int):
    s = db_session()
    post = get_readable_post(s, post_id, current_user())
    if not post.media_storage_key:
        raise NotFound("Post has no media")
    try:
        fobj = storage_from_config(current_app.config).open(post.media_storage_key)
    except StorageError:
        current_app.logger.error("Post media missing from storage: post_id=%s key=%s", post.id, post.media_storage_key)
        raise NotFound("Media not found") from None
    return send_file(
        fobj,
        mimetype=post.media_type or "application/octet-stream",
        as_attachment=False,
        download_name=post.media_filename or "media",
        max_age=0,
    )

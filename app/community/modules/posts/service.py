from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from app.community.audit import record_event
from app.community.constants import CREDIBILITY_MAX, CREDIBILITY_MIN, POST_MEDIA_EXTENSIONS
from app.community.errors import Conflict, Forbidden, NotFound, ValidationError
from app.community.modules.profiles.service import (
    calculate_reputation,
    credibility_from_accuracy_ratings,
    credibility_from_post_scores,
    get_user,
)
from app.community.modules.scopes.service import ensure_access, normalize_scope_id
from app.community.utils import parse_scope_id

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.community.models import User
    from app.community.modules.posts.models import Post, PostAccuracyRating, PostComment, PostReaction

logger = logging.getLogger(__name__)

MAX_POST_LENGTH = 5000
MAX_COMMENT_LENGTH = 2000


def get_post(s: "Session", post_id: int) -> "Post":
    from app.community.modules.posts.models import Post

    post = s.get(Post, post_id)
    if not post:
        raise NotFound("Post not found")
    return post


def get_readable_post(s: "Session", post_id: int, user: "User | None") -> "Post":
    post = get_post(s, post_id)
    ensure_access(s, user, post.scope_id)
    return post


def ensure_owner_or_admin(post: "Post", user: "User") -> None:
    if post.author_id != user.id and not user.is_admin:
        raise Forbidden("Only the author or an admin can change this post")


def validate_post_content(content) -> str:
    content = (str(content or "")).strip()
    if not content:
        raise ValidationError("Content is required.")
    if len(content) > MAX_POST_LENGTH:
        raise ValidationError(f"Content must be at most {MAX_POST_LENGTH} characters.")
    return content


def create_post(
    s: "Session",
    payload: dict,
    user: "User",
    *,
    media: tuple[bytes, str, str] | None = None,
) -> "Post":
    """Create a post in the global square or a scope the author holds a key for."""
    from flask import current_app

    from app.community.modules.posts.models import Post
    from app.community.storage import build_storage_key, file_extension, storage_from_config

    content = validate_post_content(payload.get("content"))
    scope_id = parse_scope_id(payload.get("scope_id"))
    ensure_access(s, user, scope_id)
    scope_id = normalize_scope_id(s, scope_id)

    now = datetime.utcnow()
    post = Post(author_id=user.id, scope_id=scope_id, content=content, created_at=now, updated_at=now)

    if media is not None:
        file_bytes, filename, content_type = media
        if file_extension(filename) not in POST_MEDIA_EXTENSIONS:
            raise ValidationError(f"Unsupported media type. Allowed: {', '.join(sorted(POST_MEDIA_EXTENSIONS))}")
        max_bytes = int(current_app.config.get("POST_MEDIA_MAX_BYTES") or 0)
        if max_bytes and len(file_bytes) > max_bytes:
            raise ValidationError(f"Media exceeds {max_bytes // (1024 * 1024)}MB limit.")
        post.media_storage_key = build_storage_key("posts", user.id, filename)
        post.media_type = content_type
        post.media_filename = filename

    s.add(post)
    s.flush()
    if media is not None:
        # Row first, so a failed insert never leaves a file behind.
        storage_from_config(current_app.config).put_bytes(post.media_storage_key, media[0], content_type=post.media_type)
    calculate_reputation(s, user)

    record_event(
        s,
        actor=user,
        action="post.create",
        entity_type="Post",
        entity_id=str(post.id),
        metadata={"scope_id": scope_id, "has_media": post.media_storage_key is not None},
    )
    return post


def list_posts(s: "Session", user: "User | None", scope_id: int | None, *, limit: int = 100, offset: int = 0) -> list["Post"]:
    from app.community.modules.posts.models import Post

    ensure_access(s, user, scope_id)
    scope_id = normalize_scope_id(s, scope_id)
    q = s.query(Post)
    q = q.filter(Post.scope_id.is_(None)) if scope_id is None else q.filter(Post.scope_id == scope_id)
    return q.order_by(Post.created_at.desc(), Post.id.desc()).offset(offset).limit(limit).all()


def update_post(s: "Session", post: "Post", payload: dict, user: "User") -> "Post":
    ensure_owner_or_admin(post, user)
    new_content = validate_post_content(payload.get("content"))
    if new_content != post.content:
        post.content = new_content
        post.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="post.edit", entity_type="Post", entity_id=str(post.id))
    return post


def delete_post(s: "Session", post: "Post", user: "User") -> None:
    from flask import current_app

    from app.community.storage import StorageError, storage_from_config

    ensure_owner_or_admin(post, user)
    author_id = post.author_id
    media_key = post.media_storage_key
    purge_post(s, post)
    s.flush()
    if media_key:
        try:
            storage_from_config(current_app.config).delete(media_key)
        except StorageError as e:
            logger.warning("Could not delete media for post %s: %s", post.id, e)
    author = get_user(s, author_id)
    calculate_reputation(s, author)
    record_event(
        s,
        actor=user,
        action="post.delete",
        entity_type="Post",
        entity_id=str(post.id),
        metadata={"author_id": author_id, "scope_id": post.scope_id},
    )


def purge_post(s: "Session", post: "Post") -> None:
    """Delete a post with its comments, reactions and accuracy ratings."""
    from app.community.modules.posts.models import PostAccuracyRating, PostComment, PostReaction

    for model in (PostComment, PostReaction, PostAccuracyRating):
        s.query(model).filter(model.post_id == post.id).delete(synchronize_session=False)
    s.delete(post)


def set_post_credibility(s: "Session", post: "Post", rating, admin: "User") -> "Post":
    """Moderator override; the author's credibility becomes the mean of their posts."""
    try:
        value = float(rating)
    except (TypeError, ValueError):
        raise ValidationError("Credibility rating must be a number.") from None
    if not CREDIBILITY_MIN <= value <= CREDIBILITY_MAX:
        raise ValidationError("Credibility rating must be between 0 and 100.")
    old = post.credibility_rating
    post.credibility_rating = value
    s.flush()

    author = get_user(s, post.author_id)
    credibility_from_post_scores(s, author)
    calculate_reputation(s, author)
    record_event(
        s,
        actor=admin,
        action="post.credibility_set",
        entity_type="Post",
        entity_id=str(post.id),
        metadata={"old": old, "new": value, "author_credibility": author.credibility_score},
    )
    return post


def find_reaction(s: "Session", post_id: int, user_id: int) -> "PostReaction | None":
    from app.community.modules.posts.models import PostReaction

    return (
        s.query(PostReaction)
        .filter(PostReaction.post_id == post_id, PostReaction.user_id == user_id)
        .one_or_none()
    )


def toggle_like(s: "Session", post: "Post", user: "User") -> bool:
    """Returns True when the post is now liked by the user."""
    from app.community.modules.posts.models import PostReaction

    existing = find_reaction(s, post.id, user.id)
    if existing:
        s.delete(existing)
        post.likes_count = max(0, (post.likes_count or 0) - 1)
        return False
    s.add(PostReaction(post_id=post.id, user_id=user.id, type="like"))
    try:
        s.flush()
    except IntegrityError:
        # A concurrent like by the same user won the insert; the post is liked either way.
        s.rollback()
        return True
    post.likes_count = (post.likes_count or 0) + 1
    return True


def liked_post_ids(s: "Session", user: "User | None", post_ids: list[int]) -> set[int]:
    from app.community.modules.posts.models import PostReaction

    if user is None or not post_ids:
        return set()
    rows = (
        s.query(PostReaction.post_id)
        .filter(PostReaction.user_id == user.id, PostReaction.post_id.in_(post_ids))
        .all()
    )
    return {r[0] for r in rows}


def my_accuracy_ratings(s: "Session", user: "User | None", post_ids: list[int]) -> dict[int, int]:
    from app.community.modules.posts.models import PostAccuracyRating

    if user is None or not post_ids:
        return {}
    rows = (
        s.query(PostAccuracyRating.post_id, PostAccuracyRating.rating)
        .filter(PostAccuracyRating.user_id == user.id, PostAccuracyRating.post_id.in_(post_ids))
        .all()
    )
    return {pid: rating for pid, rating in rows}


def rate_accuracy(s: "Session", post: "Post", user: "User", rating) -> "PostAccuracyRating":
    """Upsert the user's 1..5 accuracy rating; author credibility = mean rating * 20."""
    from app.community.modules.posts.models import PostAccuracyRating

    if isinstance(rating, bool):
        raise ValidationError("Rating must be an integer between 1 and 5.")
    try:
        value = int(rating)
    except (TypeError, ValueError):
        raise ValidationError("Rating must be an integer between 1 and 5.") from None
    if not 1 <= value <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5.")
    if post.author_id == user.id:
        raise Conflict("You cannot rate the accuracy of your own post.")

    now = datetime.utcnow()
    row = (
        s.query(PostAccuracyRating)
        .filter(PostAccuracyRating.post_id == post.id, PostAccuracyRating.user_id == user.id)
        .one_or_none()
    )
    if row:
        row.rating = value
        row.updated_at = now
    else:
        row = PostAccuracyRating(post_id=post.id, user_id=user.id, rating=value, created_at=now, updated_at=now)
        s.add(row)
    s.flush()

    author = get_user(s, post.author_id)
    credibility_from_accuracy_ratings(s, author)
    logger.info("Accuracy rating: post_id=%s rater=%s rating=%s author_credibility=%s", post.id, user.id, value, author.credibility_score)
    return row


def add_comment(s: "Session", post: "Post", user: "User", content) -> "PostComment":
    from app.community.modules.posts.models import PostComment

    content = (str(content or "")).strip()
    if not content:
        raise ValidationError("Content is required.")
    if len(content) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comment must be at most {MAX_COMMENT_LENGTH} characters.")
    comment = PostComment(post_id=post.id, author_id=user.id, content=content)
    s.add(comment)
    post.comments_count = (post.comments_count or 0) + 1
    s.flush()
    return comment


def list_comments(s: "Session", post: "Post") -> list["PostComment"]:
    from app.community.modules.posts.models import PostComment

    return (
        s.query(PostComment)
        .filter(PostComment.post_id == post.id)
        .order_by(PostComment.created_at.asc(), PostComment.id.asc())
        .all()
    )

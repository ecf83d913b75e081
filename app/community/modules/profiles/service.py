from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from sqlalchemy import func

from app.community.audit import record_event
from app.community.constants import (
    ACCOUNT_STATUSES,
    CREDIBILITY_DEFAULT,
    CREDIBILITY_MAX,
    CREDIBILITY_MIN,
    CREDIBILITY_THREAT_THRESHOLD,
    MAX_HOBBIES,
    MAX_HOBBY_LENGTH,
    PEER_METRICS,
    PEER_RATING_DEFAULT_AVERAGE,
    PEER_RATING_MAX,
    PEER_RATING_MIN,
    REPUTATION_CREDIBILITY_WEIGHT,
    REPUTATION_POST_WEIGHT,
    REPUTATION_RSVP_WEIGHT,
    ROLE_STUDENT,
    SECTION_LETTERS,
    STATUS_ACTIVE,
    STATUS_SUSPENDED,
    STATUS_THREATENED,
    TENDENCY_GROUPS,
    TENDENCY_MAX,
    TENDENCY_MIN,
    TENDENCY_TOTAL,
    GRADES,
)
from app.community.errors import Conflict, NotFound, ValidationError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.community.models import User
    from app.community.modules.profiles.models import PeerRating, ProfileComment

logger = logging.getLogger(__name__)


def get_user(s: "Session", user_id: int) -> "User":
    from app.community.models import User

    user = s.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


# ---------- Credibility / reputation ----------
def apply_credibility(user: "User", score: float) -> None:
    """Clamp to 0..100 and move the account between active and threatened."""
    score = max(CREDIBILITY_MIN, min(CREDIBILITY_MAX, float(score)))
    user.credibility_score = round(score, 2)
    if score < CREDIBILITY_THREAT_THRESHOLD:
        if user.account_status == STATUS_ACTIVE:
            user.account_status = STATUS_THREATENED
    elif user.account_status == STATUS_THREATENED:
        user.account_status = STATUS_ACTIVE
    user.updated_at = datetime.utcnow()


def set_credibility(s: "Session", target: "User", score, actor: "User") -> "User":
    try:
        value = float(score)
    except (TypeError, ValueError):
        raise ValidationError("Credibility score must be a number.") from None
    if not CREDIBILITY_MIN <= value <= CREDIBILITY_MAX:
        raise ValidationError("Credibility score must be between 0 and 100.")
    old = target.credibility_score
    apply_credibility(target, value)
    record_event(
        s,
        actor=actor,
        action="user.credibility_set",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"old": old, "new": target.credibility_score, "status": target.account_status},
    )
    return target


def set_account_status(s: "Session", target: "User", status: str, actor: "User") -> "User":
    status = (status or "").strip().lower()
    if status not in ACCOUNT_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(ACCOUNT_STATUSES)}")
    if target.id == actor.id:
        raise Conflict("You cannot change your own account status.")
    old = target.account_status
    target.account_status = status
    target.is_active = status != STATUS_SUSPENDED
    target.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.status_set",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"old": old, "new": status},
    )
    return target


def credibility_from_post_scores(s: "Session", author: "User") -> None:
    """Author credibility becomes the mean of their posts' moderator ratings."""
    from app.community.modules.posts.models import Post

    avg = s.query(func.avg(Post.credibility_rating)).filter(Post.author_id == author.id).scalar()
    apply_credibility(author, float(avg) if avg is not None else CREDIBILITY_DEFAULT)


def credibility_from_accuracy_ratings(s: "Session", author: "User") -> None:
    """Author credibility becomes mean accuracy rating (1..5) over all their posts, times 20."""
    from app.community.modules.posts.models import Post, PostAccuracyRating

    avg = (
        s.query(func.avg(PostAccuracyRating.rating))
        .join(Post, Post.id == PostAccuracyRating.post_id)
        .filter(Post.author_id == author.id)
        .scalar()
    )
    apply_credibility(author, float(avg) * 20 if avg is not None else CREDIBILITY_DEFAULT)


def calculate_reputation(s: "Session", user: "User") -> float:
    """
    reputation = 2.0 * posts + 1.5 * mean post credibility + 3.0 * rsvps
    (mean post credibility falls back to the user's own credibility when they have no posts).
    """
    from app.community.modules.events.models import EventRsvp
    from app.community.modules.posts.models import Post

    post_count, avg_cred = (
        s.query(func.count(Post.id), func.avg(Post.credibility_rating)).filter(Post.author_id == user.id).one()
    )
    rsvp_count = s.query(func.count(EventRsvp.id)).filter(EventRsvp.user_id == user.id).scalar() or 0
    credibility = float(avg_cred) if post_count and avg_cred is not None else float(user.credibility_score)
    score = (
        REPUTATION_POST_WEIGHT * int(post_count or 0)
        + REPUTATION_CREDIBILITY_WEIGHT * credibility
        + REPUTATION_RSVP_WEIGHT * int(rsvp_count)
    )
    user.reputation_score = round(score, 2)
    return user.reputation_score


def average_rating(user: "User") -> float:
    scores = [v for v in (user.peer_scores or {}).values() if v is not None]
    if not scores:
        return PEER_RATING_DEFAULT_AVERAGE
    return round(sum(scores) / len(scores), 2)


def author_summaries(s: "Session", user_ids: Iterable[int]) -> dict[int, dict]:
    """Compact author info shown next to posts, events and study sources."""
    from app.community.models import User

    ids = {i for i in user_ids if i is not None}
    if not ids:
        return {}
    users = s.query(User).filter(User.id.in_(ids)).all()
    return {u.id: author_json(u) for u in users}


def author_json(u: "User") -> dict:
    return {
        "id": u.id,
        "username": u.username,
        "name": u.name,
        "role": u.role,
        "avatar_url": u.avatar_url,
        "grade": u.grade,
        "class_name": u.class_name,
        "credibility_score": u.credibility_score,
        "reputation_score": u.reputation_score,
        "account_status": u.account_status,
        "average_rating": average_rating(u),
    }


# ---------- Profile edits ----------
def update_profile(s: "Session", user: "User", payload: dict) -> "User":
    changes: dict[str, dict] = {}
    for field in ("bio", "avatar_url", "name"):
        if field in payload:
            value = (str(payload.get(field) or "")).strip() or None
            if field == "name" and not value:
                raise ValidationError("Name cannot be empty.")
            if value != getattr(user, field):
                changes[field] = {"old": getattr(user, field), "new": value}
                setattr(user, field, value)
    if "grade" in payload:
        grade = payload.get("grade")
        if grade in (None, ""):
            grade = None
        else:
            try:
                grade = int(grade)
            except (TypeError, ValueError):
                raise ValidationError("Grade must be an integer.") from None
            if grade not in GRADES:
                raise ValidationError("Grade must be between 1 and 6.")
        if grade != user.grade:
            changes["grade"] = {"old": user.grade, "new": grade}
            user.grade = grade
    if "class_name" in payload:
        class_name = (str(payload.get("class_name") or "")).strip().upper() or None
        if class_name and class_name not in SECTION_LETTERS:
            raise ValidationError("Class must be one of A-E.")
        if class_name != user.class_name:
            changes["class_name"] = {"old": user.class_name, "new": class_name}
            user.class_name = class_name
    user.updated_at = datetime.utcnow()
    if changes:
        record_event(s, actor=user, action="profile.edit", entity_type="User", entity_id=str(user.id), metadata={"changes": changes})
    return user


def validate_hobbies(raw) -> list[str]:
    if not isinstance(raw, list):
        raise ValidationError("Hobbies must be a list.")
    if len(raw) > MAX_HOBBIES:
        raise ValidationError(f"At most {MAX_HOBBIES} hobbies are allowed.")
    hobbies: list[str] = []
    for item in raw:
        if not isinstance(item, str):
            raise ValidationError("Each hobby must be a string.")
        value = item.strip()
        if not 1 <= len(value) <= MAX_HOBBY_LENGTH:
            raise ValidationError(f"Each hobby must be 1-{MAX_HOBBY_LENGTH} characters.")
        hobbies.append(value)
    return hobbies


def update_hobbies(s: "Session", user: "User", raw) -> "User":
    user.hobbies = validate_hobbies(raw)
    user.updated_at = datetime.utcnow()
    return user


def validate_tendencies(payload: dict) -> tuple[str, dict[str, int]]:
    """
    A submission must contain exactly the six metrics of one chart group,
    each an integer 0..10, summing to 33. Returns (group, values).
    """
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("Tendencies must be an object of metric values.")
    keys = set(payload.keys())
    group = next((name for name, metrics in TENDENCY_GROUPS.items() if keys == set(metrics)), None)
    if group is None:
        raise ValidationError("Submit exactly the six metrics of one chart: social, skills or interests.")
    values: dict[str, int] = {}
    for key, value in payload.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{key} must be an integer.")
        if not TENDENCY_MIN <= value <= TENDENCY_MAX:
            raise ValidationError(f"{key} must be between {TENDENCY_MIN} and {TENDENCY_MAX}.")
        values[key] = value
    total = sum(values.values())
    if total != TENDENCY_TOTAL:
        raise ValidationError(f"Chart values must total exactly {TENDENCY_TOTAL} (got {total}).")
    return group, values


def update_tendencies(s: "Session", user: "User", payload: dict) -> "User":
    group, values = validate_tendencies(payload)
    merged = dict(user.tendencies or {})
    merged.update(values)
    user.tendencies = merged
    user.updated_at = datetime.utcnow()
    logger.info("Tendencies updated: user_id=%s group=%s", user.id, group)
    return user


def user_stats(s: "Session", user: "User") -> dict:
    from app.community.modules.events.models import EventRsvp
    from app.community.modules.posts.models import Post

    posts = s.query(func.count(Post.id)).filter(Post.author_id == user.id).scalar() or 0
    likes = s.query(func.coalesce(func.sum(Post.likes_count), 0)).filter(Post.author_id == user.id).scalar() or 0
    rsvps = s.query(func.count(EventRsvp.id)).filter(EventRsvp.user_id == user.id).scalar() or 0
    return {
        "user_id": user.id,
        "posts_count": int(posts),
        "likes_received": int(likes),
        "rsvps_count": int(rsvps),
        "credibility_score": user.credibility_score,
        "reputation_score": user.reputation_score,
        "average_rating": average_rating(user),
    }


# ---------- Peer ratings ----------
def validate_peer_rating_payload(payload: dict) -> tuple[dict[str, int], list[str]]:
    errors: list[str] = []
    values: dict[str, int] = {}
    for metric in PEER_METRICS:
        raw = payload.get(metric)
        if raw is None:
            errors.append(f"{metric} is required.")
            continue
        if isinstance(raw, bool):
            errors.append(f"{metric} must be an integer.")
            continue
        try:
            value = int(raw)
        except (TypeError, ValueError):
            errors.append(f"{metric} must be an integer.")
            continue
        if value != raw and not (isinstance(raw, str) and raw.strip() == str(value)):
            errors.append(f"{metric} must be an integer.")
            continue
        if not PEER_RATING_MIN <= value <= PEER_RATING_MAX:
            errors.append(f"{metric} must be between {PEER_RATING_MIN} and {PEER_RATING_MAX}.")
            continue
        values[metric] = value
    return values, errors


def recompute_peer_scores(s: "Session", rated: "User") -> None:
    from app.community.modules.profiles.models import PeerRating

    columns = [func.avg(getattr(PeerRating, m)) for m in PEER_METRICS]
    row = s.query(*columns).filter(PeerRating.rated_user_id == rated.id).one()
    if all(v is None for v in row):
        rated.peer_scores = None
        return
    rated.peer_scores = {m: round(float(v), 2) for m, v in zip(PEER_METRICS, row) if v is not None}


def get_peer_rating(s: "Session", rater: "User", rated: "User") -> "PeerRating | None":
    from app.community.modules.profiles.models import PeerRating

    return (
        s.query(PeerRating)
        .filter(PeerRating.rated_user_id == rated.id, PeerRating.rater_user_id == rater.id)
        .one_or_none()
    )


def rate_peer(s: "Session", rater: "User", rated: "User", payload: dict) -> tuple["PeerRating", bool]:
    """Upsert the rater's rating of a student. Returns (rating, created)."""
    from app.community.modules.profiles.models import PeerRating

    if rater.id == rated.id:
        raise Conflict("You cannot rate yourself.")
    if rated.role != ROLE_STUDENT:
        raise ValidationError("Only students can be rated.")
    values, errors = validate_peer_rating_payload(payload)
    if errors:
        raise ValidationError(errors)

    now = datetime.utcnow()
    rating = get_peer_rating(s, rater, rated)
    created = rating is None
    if created:
        rating = PeerRating(rated_user_id=rated.id, rater_user_id=rater.id, created_at=now)
        s.add(rating)
    for metric, value in values.items():
        setattr(rating, metric, value)
    rating.updated_at = now
    s.flush()

    recompute_peer_scores(s, rated)
    record_event(
        s,
        actor=rater,
        action="peer_rating.create" if created else "peer_rating.update",
        entity_type="User",
        entity_id=str(rated.id),
    )
    return rating, created


def peer_rating_json(r: "PeerRating") -> dict:
    data = {
        "id": r.id,
        "rated_user_id": r.rated_user_id,
        "rater_user_id": r.rater_user_id,
        "created_at": r.created_at.isoformat(),
        "updated_at": r.updated_at.isoformat(),
    }
    data.update({m: getattr(r, m) for m in PEER_METRICS})
    return data


# ---------- Profile comments ----------
def add_profile_comment(s: "Session", author: "User", profile_user: "User", payload: dict) -> "ProfileComment":
    from app.community.modules.profiles.models import ProfileComment

    content = (str(payload.get("content") or "")).strip()
    if not content:
        raise ValidationError("Content is required.")
    rating = payload.get("rating")
    if rating in (None, ""):
        rating = None
    else:
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            raise ValidationError("Rating must be an integer between 1 and 5.") from None
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5.")
    c = ProfileComment(profile_user_id=profile_user.id, author_id=author.id, content=content, rating=rating)
    s.add(c)
    s.flush()
    return c


def list_profile_comments(s: "Session", profile_user: "User") -> list["ProfileComment"]:
    from app.community.modules.profiles.models import ProfileComment

    return (
        s.query(ProfileComment)
        .filter(ProfileComment.profile_user_id == profile_user.id)
        .order_by(ProfileComment.created_at.desc(), ProfileComment.id.desc())
        .all()
    )

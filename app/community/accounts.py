"""
Account lifecycle helpers shared by admin and teacher management.

Deleting an account removes everything the user authored in one transaction
(the caller commits). Rows that merely reference the user as an actor (audit,
succession history, moderation) are kept with the reference cleared.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flask import current_app

from app.community.audit import record_event
from app.community.storage import StorageError, storage_from_config

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.community.models import User

logger = logging.getLogger(__name__)


def _decrement(s: "Session", model, ids: list[int], column: str) -> None:
    """Lower a counter on each parent row once per removed child."""
    for parent_id in ids:
        row = s.get(model, parent_id)
        if row is not None:
            setattr(row, column, max(0, (getattr(row, column) or 0) - 1))


def delete_user_account(s: "Session", user: "User", actor: "User | None", *, reason: str | None = None) -> dict:
    from app.community.models import AdminStudentId, AdminSuccession, AuditEvent, PasswordResetToken, Setting, User
    from app.community.modules.events.models import Event, EventComment, EventRsvp
    from app.community.modules.events.service import purge_event
    from app.community.modules.posts.models import Post, PostAccuracyRating, PostComment, PostReaction
    from app.community.modules.posts.service import purge_post
    from app.community.modules.profiles.models import PeerRating, ProfileComment
    from app.community.modules.profiles.service import calculate_reputation, recompute_peer_scores
    from app.community.modules.scopes.models import DigitalKey
    from app.community.modules.study_sources.models import StudySource
    from app.community.modules.teachers.models import Teacher, TeacherReview

    uid = user.id
    storage_keys: list[str] = []
    counts: dict[str, int] = {}

    posts = s.query(Post).filter(Post.author_id == uid).all()
    for post in posts:
        if post.media_storage_key:
            storage_keys.append(post.media_storage_key)
        purge_post(s, post)
    counts["posts"] = len(posts)
    s.flush()

    # Interactions on other people's posts keep their counters consistent.
    commented = [r[0] for r in s.query(PostComment.post_id).filter(PostComment.author_id == uid).all()]
    liked = [r[0] for r in s.query(PostReaction.post_id).filter(PostReaction.user_id == uid).all()]
    _decrement(s, Post, commented, "comments_count")
    _decrement(s, Post, liked, "likes_count")
    s.query(PostComment).filter(PostComment.author_id == uid).delete(synchronize_session=False)
    s.query(PostReaction).filter(PostReaction.user_id == uid).delete(synchronize_session=False)
    s.query(PostAccuracyRating).filter(PostAccuracyRating.user_id == uid).delete(synchronize_session=False)

    events = s.query(Event).filter(Event.created_by_id == uid).all()
    attendee_ids: set[int] = set()
    for ev in events:
        attendee_ids.update(purge_event(s, ev))
    attendee_ids.discard(uid)
    counts["events"] = len(events)
    s.flush()
    s.query(EventRsvp).filter(EventRsvp.user_id == uid).delete(synchronize_session=False)
    s.query(EventComment).filter(EventComment.author_id == uid).delete(synchronize_session=False)

    counts["keys"] = s.query(DigitalKey).filter(DigitalKey.user_id == uid).delete(synchronize_session=False)

    rated_ids = [r[0] for r in s.query(PeerRating.rated_user_id).filter(PeerRating.rater_user_id == uid).all()]
    s.query(PeerRating).filter((PeerRating.rater_user_id == uid) | (PeerRating.rated_user_id == uid)).delete(
        synchronize_session=False
    )
    s.query(ProfileComment).filter(
        (ProfileComment.author_id == uid) | (ProfileComment.profile_user_id == uid)
    ).delete(synchronize_session=False)

    s.query(TeacherReview).filter(TeacherReview.student_id == uid).delete(synchronize_session=False)
    s.query(TeacherReview).filter(TeacherReview.moderated_by_id == uid).update(
        {TeacherReview.moderated_by_id: None}, synchronize_session=False
    )
    s.query(Teacher).filter(Teacher.user_id == uid).update(
        {Teacher.user_id: None, Teacher.is_claimed: False, Teacher.claimed_at: None}, synchronize_session=False
    )

    sources = s.query(StudySource).filter(StudySource.author_id == uid).all()
    for src in sources:
        storage_keys.append(src.storage_key)
        s.delete(src)
    counts["study_sources"] = len(sources)

    s.query(PasswordResetToken).filter(PasswordResetToken.user_id == uid).delete(synchronize_session=False)
    s.query(AdminStudentId).filter(AdminStudentId.assigned_to_user_id == uid).delete(synchronize_session=False)
    s.query(AdminStudentId).filter(AdminStudentId.created_by_admin_id == uid).update(
        {AdminStudentId.created_by_admin_id: None}, synchronize_session=False
    )
    s.query(AdminSuccession).filter(AdminSuccession.previous_admin_id == uid).update(
        {AdminSuccession.previous_admin_id: None}, synchronize_session=False
    )
    s.query(AdminSuccession).filter(AdminSuccession.new_admin_id == uid).update(
        {AdminSuccession.new_admin_id: None}, synchronize_session=False
    )
    s.query(Setting).filter(Setting.updated_by_user_id == uid).update(
        {Setting.updated_by_user_id: None}, synchronize_session=False
    )
    s.query(AuditEvent).filter(AuditEvent.actor_user_id == uid).update(
        {AuditEvent.actor_user_id: None}, synchronize_session=False
    )
    s.flush()

    for rated in s.query(User).filter(User.id.in_(rated_ids)).all() if rated_ids else []:
        recompute_peer_scores(s, rated)
    # RSVPs to the removed events no longer count towards attendees' reputation.
    for attendee in s.query(User).filter(User.id.in_(attendee_ids)).all() if attendee_ids else []:
        calculate_reputation(s, attendee)

    record_event(
        s,
        actor=actor,
        action="user.delete",
        entity_type="User",
        entity_id=str(uid),
        reason=reason,
        metadata={"username": user.username, "role": user.role, **counts},
    )
    s.delete(user)
    s.flush()

    storage = storage_from_config(current_app.config)
    for key in storage_keys:
        try:
            storage.delete(key)
        except StorageError as e:
            logger.warning("Could not delete stored file %s for user %s: %s", key, uid, e)
    logger.info("Deleted account user_id=%s counts=%s", uid, counts)
    return counts

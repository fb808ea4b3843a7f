"""
Annotation log.

Timestamped comments on a video. Listing order is always
``timestamp_seconds`` ascending (ties by creation time, then id), never
insertion order, and live subscribers receive the full list in that same
order after every change.

Authorization:
- adding requires ``can_comment`` on the video's folder (the owner always may)
- removing is allowed for the annotation's author only; the folder's
  ``can_delete`` flag governs videos, not annotations
"""
import math

import structlog
from sqlalchemy import select

from dugout.errors import Forbidden, NotFound
from dugout.feeds import Subscription, get_feed
from dugout.folders import require_permission, require_read_access
from dugout.models import Annotation, Capability, Video, db, utcnow

logger = structlog.get_logger(__name__)

MAX_TEXT_LENGTH = 2000


def _get_video(video_id: str) -> Video:
    video = db.session.get(Video, video_id) if video_id else None
    if video is None:
        raise NotFound(f"Video {video_id} not found")
    return video


def _ordered(video_id: str):
    return (
        select(Annotation)
        .where(Annotation.video_id == video_id)
        .order_by(
            Annotation.timestamp_seconds.asc(),
            Annotation.created_at.asc(),
            Annotation.id.asc(),
        )
    )


def snapshot(video_id: str) -> tuple[dict, ...]:
    """Current ordered annotation list as immutable snapshot for subscribers."""
    return tuple(a.to_dict() for a in db.session.execute(_ordered(video_id)).scalars())


def publish_snapshot(video_id: str) -> int:
    return get_feed().publish(video_id, lambda: snapshot(video_id))


def add_annotation(
    video_id: str,
    author_id: str,
    author_name: str,
    timestamp_seconds: float,
    text: str,
    is_reviewer_comment: bool | None = None,
) -> Annotation:
    """
    Add a comment at a point in a video.

    Args:
        video_id: Video being annotated
        author_id: Principal writing the comment
        author_name: Display name stored with the comment
        timestamp_seconds: Position in the video (finite, >= 0)
        text: Comment body (1-2000 characters)
        is_reviewer_comment: Derived from folder ownership when None

    Returns:
        Annotation: The stored annotation

    Raises:
        NotFound: If the video does not exist
        Forbidden: If the author lacks can_comment on the folder
        ValueError: If the timestamp or text is invalid
    """
    video = _get_video(video_id)
    folder, _ = require_permission(video.folder_id, author_id, Capability.COMMENT)

    try:
        position = float(timestamp_seconds)
    except (TypeError, ValueError) as e:
        raise ValueError("timestamp_seconds must be a number") from e
    if isinstance(timestamp_seconds, bool) or not math.isfinite(position) or position < 0:
        raise ValueError("timestamp_seconds must be a finite number >= 0")
    text = (text or "").strip()
    if not text:
        raise ValueError("Annotation text is required")
    if len(text) > MAX_TEXT_LENGTH:
        raise ValueError(f"Annotation text must be at most {MAX_TEXT_LENGTH} characters")

    if is_reviewer_comment is None:
        is_reviewer_comment = not folder.is_owned_by(author_id)

    annotation = Annotation(
        video_id=video.id,
        author_id=author_id,
        author_name=(author_name or author_id)[:255],
        timestamp_seconds=position,
        text=text,
        is_reviewer_comment=bool(is_reviewer_comment),
        created_at=utcnow(),
    )
    db.session.add(annotation)
    db.session.commit()

    logger.info(
        "annotation_added",
        annotation_id=annotation.id,
        video_id=video_id,
        author_id=author_id,
    )
    publish_snapshot(video_id)
    return annotation


def list_annotations(video_id: str, requested_by: str | None = None) -> list[Annotation]:
    """
    Annotations of a video sorted by ``timestamp_seconds`` ascending.

    Args:
        video_id: Video to list
        requested_by: When given, must have read access to the video's folder

    Raises:
        NotFound: If the video does not exist (or is invisible to the caller)
    """
    video = _get_video(video_id)
    if requested_by is not None:
        require_read_access(video.folder_id, requested_by)
    return list(db.session.execute(_ordered(video.id)).scalars())


def remove_annotation(annotation_id: str, requested_by: str) -> None:
    """
    Delete an annotation. Only its author may do this.

    Raises:
        NotFound: If the annotation does not exist
        Forbidden: If ``requested_by`` is not the author
    """
    annotation = db.session.get(Annotation, annotation_id) if annotation_id else None
    if annotation is None:
        raise NotFound(f"Annotation {annotation_id} not found")
    if annotation.author_id != requested_by:
        raise Forbidden("Only the author can remove an annotation")

    video_id = annotation.video_id
    db.session.delete(annotation)
    db.session.commit()
    logger.info("annotation_removed", annotation_id=annotation_id, video_id=video_id)
    publish_snapshot(video_id)


def subscribe(video_id: str, requested_by: str | None = None) -> Subscription:
    """
    Open a live feed of ordered snapshots for a video.

    The first snapshot is the current list. The caller owns the returned
    subscription and must close it.

    Raises:
        NotFound: If the video does not exist (or is invisible to the caller)
    """
    video = _get_video(video_id)
    if requested_by is not None:
        require_read_access(video.folder_id, requested_by)
    return get_feed().subscribe(video.id, lambda: snapshot(video.id))

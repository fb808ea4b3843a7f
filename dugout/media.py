"""
Media metadata pipeline.

``record_upload`` runs after the binary upload finished and performs two
separate steps:

1. persist the Video row
2. atomically increment the folder's ``video_count`` and bump ``updated_at``

If step 2 fails after step 1 committed, the video stays and the counter is
left one short. That is logged and repaired by :func:`recount_videos`;
the caller still gets the video back.

``upload_video`` is the authorized entrypoint: it checks ``can_upload``,
writes the blobs, then calls ``record_upload``.
"""
from dataclasses import dataclass
from typing import BinaryIO

import structlog
from sqlalchemy import case, func, select, update

from dugout import storage as storage_lib
from dugout.cascade import purge_video_tree, release_blobs
from dugout.error_utils import safe_log_error
from dugout.errors import Forbidden, NotFound, UpstreamUnavailable
from dugout.folders import require_permission, require_read_access
from dugout.models import (
    Capability,
    Folder,
    UploaderType,
    Video,
    VideoType,
    db,
    utcnow,
)

logger = structlog.get_logger(__name__)

# Game/practice context carried on a video; other keys are dropped
CONTEXT_FIELDS = (
    "game_opponent",
    "game_date",
    "practice_date",
    "notes",
    "season_id",
    "game_id",
    "practice_id",
)


@dataclass(frozen=True)
class ThumbnailInfo:
    """Stored thumbnail variants of a video."""

    standard_ref: str
    high_quality_ref: str | None = None
    timestamp: float | None = None
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class ThumbnailUpload:
    """Thumbnail bytes supplied alongside a video upload."""

    standard: bytes
    high_quality: bytes | None = None
    timestamp: float | None = None
    width: int | None = None
    height: int | None = None


def _clean_context(context: dict | None) -> dict:
    if context is None:
        return {}
    if not isinstance(context, dict):
        raise ValueError("context must be an object")
    return {k: v for k, v in context.items() if k in CONTEXT_FIELDS and v is not None}


def _coerce_video_type(video_type) -> VideoType:
    try:
        return video_type if isinstance(video_type, VideoType) else VideoType(video_type)
    except ValueError as e:
        raise ValueError(f"Unknown video type {video_type!r}") from e


def adjust_video_count(folder_id: str, delta: int) -> bool:
    """
    Atomically add ``delta`` to a folder's video count (never below zero).

    Returns:
        bool: True if the folder row was updated
    """
    result = db.session.execute(
        update(Folder)
        .where(Folder.id == folder_id)
        .values(
            video_count=case(
                (Folder.video_count + delta < 0, 0),
                else_=Folder.video_count + delta,
            ),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def record_upload(
    folder_id: str,
    uploader_id: str,
    uploader_name: str,
    uploader_type: UploaderType,
    blob_ref: str,
    file_name: str,
    thumbnail: ThumbnailInfo | None = None,
    size_bytes: int = 0,
    duration: float | None = None,
    video_type: VideoType | str = VideoType.GAME,
    context: dict | None = None,
) -> Video:
    """
    Create the metadata for a completed upload and bump the folder counter.

    The caller is responsible for having checked ``can_upload``.

    Args:
        folder_id: Folder receiving the video
        uploader_id: Principal who uploaded
        uploader_name: Display name snapshot
        uploader_type: OWNER or REVIEWER
        blob_ref: Storage ref of the video binary
        file_name: Original file name
        thumbnail: Stored thumbnail variants, if any
        size_bytes: Size of the binary
        duration: Length in seconds, if known
        video_type: GAME, PRACTICE or HIGHLIGHT
        context: Game/practice context fields

    Returns:
        Video: The persisted video

    Raises:
        NotFound: If the folder does not exist
        ValueError: If a high-quality thumbnail is given for a non-highlight
    """
    video_type = _coerce_video_type(video_type)
    if thumbnail and thumbnail.high_quality_ref and video_type != VideoType.HIGHLIGHT:
        raise ValueError("High-quality thumbnails are only stored for highlights")
    if size_bytes is None or int(size_bytes) < 0:
        raise ValueError("size_bytes must be >= 0")
    if duration is not None and float(duration) < 0:
        raise ValueError("duration must be >= 0")
    if db.session.get(Folder, folder_id) is None:
        raise NotFound(f"Folder {folder_id} not found")

    # Step 1: the video document
    video = Video(
        folder_id=folder_id,
        file_name=file_name,
        blob_ref=blob_ref,
        thumbnail_ref=thumbnail.standard_ref if thumbnail else None,
        thumbnail_hq_ref=thumbnail.high_quality_ref if thumbnail else None,
        thumbnail_timestamp=thumbnail.timestamp if thumbnail else None,
        thumbnail_width=thumbnail.width if thumbnail else None,
        thumbnail_height=thumbnail.height if thumbnail else None,
        uploaded_by_id=uploader_id,
        uploaded_by_name=(uploader_name or uploader_id)[:255],
        uploader_type=uploader_type,
        size_bytes=int(size_bytes),
        duration=float(duration) if duration is not None else None,
        video_type=video_type,
        context=_clean_context(context),
        is_orphaned=False,
        created_at=utcnow(),
    )
    db.session.add(video)
    db.session.commit()
    logger.info(
        "video_recorded",
        video_id=video.id,
        folder_id=folder_id,
        uploader_id=uploader_id,
        video_type=video_type.value,
    )

    # Step 2: the counter; a failure here leaves the count short until recount
    try:
        adjust_video_count(folder_id, +1)
    except Exception as e:
        db.session.rollback()
        safe_log_error(
            logger,
            "video_count_adjust_failed",
            exc_info=e,
            folder_id=folder_id,
            video_id=video.id,
            delta=1,
        )
    return video


def upload_video(
    folder_id: str,
    principal_id: str,
    principal_name: str,
    file_name: str,
    data: bytes | BinaryIO,
    thumbnails: ThumbnailUpload | None = None,
    duration: float | None = None,
    video_type: VideoType | str = VideoType.GAME,
    context: dict | None = None,
) -> Video:
    """
    Store an uploaded video and its thumbnails, then record its metadata.

    Raises:
        Forbidden: If the principal lacks can_upload on the folder
        UpstreamUnavailable: If blob storage fails
    """
    folder, _ = require_permission(folder_id, principal_id, Capability.UPLOAD)
    video_type = _coerce_video_type(video_type)
    if thumbnails and thumbnails.high_quality and video_type != VideoType.HIGHLIGHT:
        raise ValueError("High-quality thumbnails are only stored for highlights")

    store = storage_lib.get_storage()
    name = storage_lib.safe_file_name(file_name)
    stem = storage_lib.blob_stem(name)
    written: list[str] = []
    try:
        blob_ref = store.put_object(storage_lib.video_path(folder.id, stem), data)
        written.append(blob_ref)
        size_bytes = store.size(blob_ref)

        thumbnail = None
        if thumbnails is not None:
            standard_ref = store.put_object(
                storage_lib.thumbnail_path(folder.id, stem), thumbnails.standard
            )
            written.append(standard_ref)
            hq_ref = None
            if thumbnails.high_quality:
                hq_ref = store.put_object(
                    storage_lib.thumbnail_path(folder.id, stem, high_quality=True),
                    thumbnails.high_quality,
                )
                written.append(hq_ref)
            thumbnail = ThumbnailInfo(
                standard_ref=standard_ref,
                high_quality_ref=hq_ref,
                timestamp=thumbnails.timestamp,
                width=thumbnails.width,
                height=thumbnails.height,
            )

        uploader_type = (
            UploaderType.OWNER if folder.is_owned_by(principal_id) else UploaderType.REVIEWER
        )
        return record_upload(
            folder_id=folder.id,
            uploader_id=principal_id,
            uploader_name=principal_name,
            uploader_type=uploader_type,
            blob_ref=blob_ref,
            file_name=name,
            thumbnail=thumbnail,
            size_bytes=size_bytes,
            duration=duration,
            video_type=video_type,
            context=context,
        )
    except Exception:
        db.session.rollback()
        for ref in written:
            try:
                store.delete(ref)
            except UpstreamUnavailable as cleanup_error:
                safe_log_error(
                    logger, "upload_cleanup_failed", exc_info=cleanup_error, blob_ref=ref
                )
        raise


def get_video(video_id: str, requested_by: str | None = None) -> Video:
    """Load a video, optionally checking the caller can read its folder."""
    video = db.session.get(Video, video_id) if video_id else None
    if video is None:
        raise NotFound(f"Video {video_id} not found")
    if requested_by is not None:
        require_read_access(video.folder_id, requested_by)
    return video


def list_videos(folder_id: str, requested_by: str) -> list[Video]:
    """Videos of a folder, newest first."""
    folder = require_read_access(folder_id, requested_by)
    return list(
        db.session.execute(
            select(Video)
            .where(Video.folder_id == folder.id)
            .order_by(Video.created_at.desc(), Video.id.desc())
        ).scalars()
    )


def delete_video(video_id: str, requested_by: str) -> None:
    """
    Delete a video: annotations first, then the video, then the counter.

    Allowed for the folder owner and reviewers holding ``can_delete``.

    Raises:
        NotFound: If the video does not exist
        Forbidden: If the caller may not delete videos in this folder
    """
    video = get_video(video_id)
    folder_id = video.folder_id
    try:
        require_permission(folder_id, requested_by, Capability.DELETE)
    except Forbidden:
        logger.info("video_delete_denied", video_id=video_id, principal_id=requested_by)
        raise

    try:
        purged = purge_video_tree(video)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    try:
        adjust_video_count(folder_id, -1)
    except Exception as e:
        db.session.rollback()
        safe_log_error(
            logger,
            "video_count_adjust_failed",
            exc_info=e,
            folder_id=folder_id,
            video_id=video_id,
            delta=-1,
        )

    release_blobs(purged)
    logger.info(
        "video_deleted",
        video_id=video_id,
        folder_id=folder_id,
        annotations=purged.annotation_count,
    )


def recount_videos(folder_id: str) -> int:
    """
    Recompute a folder's video count from the video rows.

    Repairs the undercount left when step 2 of :func:`record_upload` failed.

    Returns:
        int: The corrected count
    """
    folder = db.session.get(Folder, folder_id)
    if folder is None:
        raise NotFound(f"Folder {folder_id} not found")
    actual = db.session.execute(
        select(func.count(Video.id)).where(Video.folder_id == folder_id)
    ).scalar_one()
    if folder.video_count != actual:
        logger.warning(
            "video_count_repaired",
            folder_id=folder_id,
            stored=folder.video_count,
            actual=actual,
        )
        folder.video_count = actual
        folder.updated_at = utcnow()
    db.session.commit()
    return actual

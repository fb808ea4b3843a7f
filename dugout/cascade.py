"""
Cascading deletion.

Deletes always walk the graph children first: annotations, then videos,
then the folder's invitations and permission entries, then the folder
itself. Nothing ever references a row that is already gone.

The ``purge_*`` helpers only stage deletes on the current session; callers
commit (or roll back) the whole unit of work and then call
:func:`release_blobs` so blob removal and live-feed shutdown happen only
after the metadata is really gone.
"""
from dataclasses import dataclass, field

import structlog
from sqlalchemy import delete, func, select, update

from dugout.error_utils import safe_log_error
from dugout.errors import UpstreamUnavailable
from dugout.models import (
    Annotation,
    Folder,
    FolderPermission,
    Invitation,
    SyncedRecord,
    UserProfile,
    Video,
    db,
    utcnow,
)
from dugout.records import STORES

logger = structlog.get_logger(__name__)


@dataclass
class PurgeResult:
    """What a purge removed; consumed by :func:`release_blobs` after commit."""

    folder_ids: list[str] = field(default_factory=list)
    video_ids: list[str] = field(default_factory=list)
    blob_refs: list[str] = field(default_factory=list)
    annotation_count: int = 0
    # Videos that lost annotations but still exist; their feeds get a new snapshot
    touched_video_ids: set[str] = field(default_factory=set)

    def merge(self, other: "PurgeResult") -> "PurgeResult":
        self.folder_ids.extend(other.folder_ids)
        self.video_ids.extend(other.video_ids)
        self.blob_refs.extend(other.blob_refs)
        self.annotation_count += other.annotation_count
        self.touched_video_ids |= other.touched_video_ids
        return self


def _purge_videos(videos: list[Video]) -> PurgeResult:
    result = PurgeResult()
    if not videos:
        return result
    video_ids = [v.id for v in videos]
    for video in videos:
        result.blob_refs.extend(video.blob_refs)
    result.video_ids.extend(video_ids)

    # Children first: annotations, then the videos themselves
    deleted = db.session.execute(
        delete(Annotation)
        .where(Annotation.video_id.in_(video_ids))
        .execution_options(synchronize_session=False)
    )
    result.annotation_count = deleted.rowcount or 0
    db.session.execute(
        delete(Video)
        .where(Video.id.in_(video_ids))
        .execution_options(synchronize_session=False)
    )
    return result


def purge_video_tree(video: Video) -> PurgeResult:
    """Stage deletion of one video and its annotations (no counter change)."""
    return _purge_videos([video])


def purge_folder_tree(folder: Folder) -> PurgeResult:
    """
    Stage deletion of a folder and everything under it.

    Order: annotations of every video, videos, invitations, permission
    entries, then the folder row.
    """
    videos = list(
        db.session.execute(select(Video).where(Video.folder_id == folder.id)).scalars()
    )
    result = _purge_videos(videos)
    db.session.execute(
        delete(Invitation)
        .where(Invitation.folder_id == folder.id)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(
        delete(FolderPermission)
        .where(FolderPermission.folder_id == folder.id)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(
        delete(Folder)
        .where(Folder.id == folder.id)
        .execution_options(synchronize_session=False)
    )
    result.folder_ids.append(folder.id)
    return result


def release_blobs(result: PurgeResult) -> None:
    """
    Post-commit cleanup for a purge: close live feeds and remove blobs.

    Blob removal is best-effort; a failure leaves an unreferenced blob,
    which is logged and never surfaces to the caller.
    """
    from dugout import annotations
    from dugout.feeds import get_feed
    from dugout.storage import get_storage
    from dugout.url_broker import get_broker

    feed = get_feed()
    for video_id in result.video_ids:
        feed.close_video(video_id)
    for video_id in result.touched_video_ids - set(result.video_ids):
        annotations.publish_snapshot(video_id)

    storage = get_storage()
    broker = get_broker()
    for ref in result.blob_refs:
        broker.invalidate(ref)
        try:
            storage.delete(ref)
        except UpstreamUnavailable as e:
            safe_log_error(logger, "blob_cleanup_failed", exc_info=e, blob_ref=ref)


def delete_account(principal_id: str) -> PurgeResult:
    """
    Remove everything a principal owns and detach them from everything else.

    In one transaction:

    - every folder they own is deleted as a tree
    - annotations they wrote on other owners' videos are deleted
    - invitations they sent are deleted
    - their permission entries on other folders are removed
    - videos they uploaded into other owners' folders are kept and marked orphaned
    - their synced records (all entity types, tombstones included) are purged
    - their profile is deleted

    Queued notifications are kept; they carry their own copies of names and
    contacts.

    Returns:
        PurgeResult: Summary of what was removed
    """
    if not principal_id:
        raise ValueError("principal_id is required")

    now = utcnow()
    result = PurgeResult()
    try:
        owned = list(
            db.session.execute(select(Folder).where(Folder.owner_id == principal_id)).scalars()
        )
        for folder in owned:
            result.merge(purge_folder_tree(folder))

        touched = db.session.execute(
            select(Annotation.video_id).where(Annotation.author_id == principal_id).distinct()
        ).scalars()
        result.touched_video_ids |= set(touched)
        deleted = db.session.execute(
            delete(Annotation)
            .where(Annotation.author_id == principal_id)
            .execution_options(synchronize_session=False)
        )
        result.annotation_count += deleted.rowcount or 0

        db.session.execute(
            delete(Invitation)
            .where(Invitation.owner_id == principal_id)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            delete(FolderPermission)
            .where(FolderPermission.reviewer_id == principal_id)
            .execution_options(synchronize_session=False)
        )
        orphaned = db.session.execute(
            update(Video)
            .where(Video.uploaded_by_id == principal_id, Video.is_orphaned.is_(False))
            .values(is_orphaned=True, orphaned_at=now)
            .execution_options(synchronize_session=False)
        )
        records_deleted = sum(store.purge_owner(principal_id) for store in STORES.values())
        db.session.execute(
            delete(UserProfile)
            .where(UserProfile.id == principal_id)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    # Bulk statements bypassed the identity map
    db.session.expire_all()
    release_blobs(result)
    logger.info(
        "account_deleted",
        principal_id=principal_id,
        folders=len(result.folder_ids),
        videos=len(result.video_ids),
        annotations=result.annotation_count,
        orphaned_videos=orphaned.rowcount or 0,
        records=records_deleted,
    )
    return result


def count_remaining(principal_id: str) -> dict:
    """Rows still attributable to a principal (used to verify a deletion)."""
    def _count(stmt):
        return db.session.execute(stmt).scalar_one()

    return {
        "folders": _count(select(func.count(Folder.id)).where(Folder.owner_id == principal_id)),
        "records": _count(
            select(func.count(SyncedRecord.id)).where(SyncedRecord.owner_id == principal_id)
        ),
        "annotations": _count(
            select(func.count(Annotation.id)).where(Annotation.author_id == principal_id)
        ),
        "grants": _count(
            select(func.count(FolderPermission.id)).where(
                FolderPermission.reviewer_id == principal_id
            )
        ),
        "invitations": _count(
            select(func.count(Invitation.id)).where(Invitation.owner_id == principal_id)
        ),
    }

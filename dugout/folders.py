"""
Folder and permission registry.

Folders are owned by exactly one principal. Reviewers get access through a
per-folder permission entry; having an entry always allows reading the
folder, and its flags gate uploading, commenting and deleting videos.

Only the owner may grant, revoke, rename or delete. Every media and
annotation operation checks access through :func:`require_permission` or
:func:`require_read_access` before touching data.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from dugout import notifications
from dugout.errors import Forbidden, NotFound
from dugout.models import (
    FULL_PERMISSION,
    Capability,
    Folder,
    FolderPermission,
    Permission,
    db,
    utcnow,
)
from dugout.profiles import contact_for, display_name_for

logger = structlog.get_logger(__name__)

MAX_FOLDER_NAME_LENGTH = 128


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("Folder name is required")
    if len(name) > MAX_FOLDER_NAME_LENGTH:
        raise ValueError(f"Folder name must be at most {MAX_FOLDER_NAME_LENGTH} characters")
    return name


def create_folder(owner_id: str, name: str) -> Folder:
    """
    Create an empty folder owned by ``owner_id``.

    Args:
        owner_id: Principal creating the folder
        name: Display name (1-128 characters)

    Returns:
        Folder: The new folder with no reviewers and a zero video count
    """
    if not owner_id:
        raise ValueError("owner_id is required")
    now = utcnow()
    folder = Folder(
        owner_id=owner_id,
        name=_clean_name(name),
        video_count=0,
        created_at=now,
        updated_at=now,
    )
    db.session.add(folder)
    db.session.commit()
    logger.info("folder_created", folder_id=folder.id, owner_id=owner_id)
    return folder


def get_folder(folder_id: str) -> Folder:
    """Load a folder or raise :class:`NotFound`."""
    folder = db.session.get(Folder, folder_id) if folder_id else None
    if folder is None:
        raise NotFound(f"Folder {folder_id} not found")
    return folder


def _grant_row(folder_id: str, reviewer_id: str) -> FolderPermission | None:
    return db.session.execute(
        select(FolderPermission).where(
            FolderPermission.folder_id == folder_id,
            FolderPermission.reviewer_id == reviewer_id,
        )
    ).scalar_one_or_none()


def get_effective_permission(folder_id: str, principal_id: str) -> Permission | None:
    """
    Resolve what ``principal_id`` may do in a folder.

    The owner always resolves to full permission. A reviewer resolves to
    their entry; anyone else gets ``None`` (no access).

    Raises:
        NotFound: If the folder does not exist
    """
    folder = get_folder(folder_id)
    if folder.is_owned_by(principal_id):
        return FULL_PERMISSION
    grant = _grant_row(folder.id, principal_id)
    return grant.permission if grant is not None else None


def require_owner(folder_id: str, principal_id: str) -> Folder:
    """Return the folder if ``principal_id`` owns it, else raise :class:`Forbidden`."""
    folder = get_folder(folder_id)
    if not folder.is_owned_by(principal_id):
        raise Forbidden("Only the folder owner can do this")
    return folder


def require_read_access(folder_id: str, principal_id: str) -> Folder:
    """
    Return the folder if ``principal_id`` owns it or holds any permission entry.

    Raises:
        NotFound: If the folder does not exist or the principal has no access
            (existence is not revealed to outsiders)
    """
    folder = get_folder(folder_id)
    if folder.is_owned_by(principal_id) or _grant_row(folder.id, principal_id):
        return folder
    raise NotFound(f"Folder {folder_id} not found")


def require_permission(
    folder_id: str, principal_id: str, capability: Capability
) -> tuple[Folder, Permission]:
    """
    Check that ``principal_id`` holds ``capability`` on the folder.

    Returns:
        (folder, effective permission)

    Raises:
        NotFound: If the folder does not exist
        Forbidden: If the principal has no entry or the entry lacks the capability
    """
    folder = get_folder(folder_id)
    permission = get_effective_permission(folder.id, principal_id)
    if permission is None or not permission.allows(capability):
        logger.info(
            "permission_denied",
            folder_id=folder.id,
            principal_id=principal_id,
            capability=capability.value,
        )
        raise Forbidden(f"Missing {capability.value} on folder {folder.id}")
    return folder, permission


def grant_access(
    folder_id: str,
    reviewer_id: str,
    permission: Permission,
    requested_by: str,
    commit: bool = True,
) -> FolderPermission:
    """
    Give a reviewer a permission entry on a folder, replacing any existing one.

    Args:
        folder_id: Target folder
        reviewer_id: Principal receiving access
        permission: Capabilities to grant
        requested_by: Caller; must be the folder owner
        commit: Commit the session. Pass False to make the grant part of a
            larger unit of work (invitation acceptance); the caller commits.

    Returns:
        FolderPermission: The stored entry

    Raises:
        Forbidden: If the caller is not the owner
        ValueError: If the reviewer is the owner
    """
    folder = require_owner(folder_id, requested_by)
    if not reviewer_id:
        raise ValueError("reviewer_id is required")
    if folder.is_owned_by(reviewer_id):
        raise ValueError("The owner cannot be added as a reviewer")
    if not isinstance(permission, Permission):
        raise ValueError("permission must be a Permission")

    now = utcnow()
    grant = _grant_row(folder.id, reviewer_id)
    if grant is None:
        grant = FolderPermission(
            folder_id=folder.id,
            reviewer_id=reviewer_id,
            granted_by_id=requested_by,
            granted_at=now,
        )
        db.session.add(grant)
    grant.apply(permission)
    grant.updated_at = now
    folder.updated_at = now

    try:
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except IntegrityError:
        # A concurrent grant inserted the same (folder, reviewer) pair first
        db.session.rollback()
        if not commit:
            raise
        grant = _grant_row(folder_id, reviewer_id)
        grant.apply(permission)
        grant.updated_at = now
        get_folder(folder_id).updated_at = now
        db.session.commit()

    logger.info(
        "access_granted",
        folder_id=folder_id,
        reviewer_id=reviewer_id,
        permission=permission.to_dict(),
    )
    return grant


def revoke_access(folder_id: str, reviewer_id: str, requested_by: str) -> None:
    """
    Remove a reviewer's entry and queue a revocation notice.

    The notice is fire-and-forget: it carries the folder name, reviewer
    contact and owner name so it can be delivered later without lookups,
    and a failure to queue it never undoes the revocation.

    Raises:
        Forbidden: If the caller is not the owner
        NotFound: If the reviewer has no entry on the folder
    """
    folder = require_owner(folder_id, requested_by)
    grant = _grant_row(folder.id, reviewer_id)
    if grant is None:
        raise NotFound(f"Reviewer {reviewer_id} has no access to folder {folder_id}")

    # Snapshot before the commit expires the instances
    folder_name = folder.name
    owner_id = folder.owner_id
    owner_name = display_name_for(owner_id)
    reviewer_contact = contact_for(reviewer_id)

    db.session.delete(grant)
    folder.updated_at = utcnow()
    db.session.commit()
    logger.info("access_revoked", folder_id=folder_id, reviewer_id=reviewer_id)

    notifications.notify_access_revoked(
        folder_id=folder_id,
        folder_name=folder_name,
        owner_id=owner_id,
        owner_name=owner_name,
        reviewer_id=reviewer_id,
        reviewer_contact=reviewer_contact,
    )


def list_folders_for_owner(owner_id: str) -> list[Folder]:
    return list(
        db.session.execute(
            select(Folder)
            .where(Folder.owner_id == owner_id)
            .order_by(Folder.created_at.asc(), Folder.id.asc())
        ).scalars()
    )


def list_folders_for_reviewer(reviewer_id: str) -> list[Folder]:
    """Folders where ``reviewer_id`` holds a permission entry."""
    return list(
        db.session.execute(
            select(Folder)
            .join(FolderPermission, FolderPermission.folder_id == Folder.id)
            .where(FolderPermission.reviewer_id == reviewer_id)
            .order_by(Folder.created_at.asc(), Folder.id.asc())
        ).scalars()
    )


def rename_folder(folder_id: str, name: str, requested_by: str) -> Folder:
    folder = require_owner(folder_id, requested_by)
    folder.name = _clean_name(name)
    folder.updated_at = utcnow()
    db.session.commit()
    logger.info("folder_renamed", folder_id=folder_id)
    return folder


def delete_folder(folder_id: str, requested_by: str) -> None:
    """
    Delete a folder and everything under it, children first.

    Raises:
        Forbidden: If the caller is not the owner
    """
    from dugout.cascade import purge_folder_tree, release_blobs

    folder = require_owner(folder_id, requested_by)
    try:
        purged = purge_folder_tree(folder)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    release_blobs(purged)
    logger.info(
        "folder_deleted",
        folder_id=folder_id,
        videos=len(purged.video_ids),
        annotations=purged.annotation_count,
    )

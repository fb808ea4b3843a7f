"""
Invitation workflow.

An owner invites a reviewer by contact (email) before knowing their
principal id. Invitations move from pending to accepted or declined, and
both of those are terminal. A pending invitation past ``expires_at``
(sent_at + INVITATION_TTL_DAYS, 30 by default) is inert: it can be neither
accepted nor declined, even before the purge task removes it.

Several pending invitations for the same folder and contact may coexist;
callers are expected not to double-invite.
"""
import re
from datetime import datetime, timedelta

import structlog
from flask import current_app
from sqlalchemy import delete, select

from dugout import notifications
from dugout.errors import Expired, Forbidden, NotFound
from dugout.folders import grant_access, require_owner
from dugout.models import (
    DEFAULT_PERMISSION,
    Invitation,
    InvitationStatus,
    Permission,
    db,
    utcnow,
)
from dugout.profiles import display_name_for, normalize_contact

logger = structlog.get_logger(__name__)

DEFAULT_TTL_DAYS = 30

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def invitation_ttl() -> timedelta:
    return timedelta(days=int(current_app.config.get("INVITATION_TTL_DAYS", DEFAULT_TTL_DAYS)))


def _clean_contact(contact: str | None) -> str:
    contact = normalize_contact(contact)
    if not contact or not _EMAIL_RE.match(contact) or len(contact) > 255:
        raise ValueError("A valid reviewer email is required")
    return contact


def get_invitation(invitation_id: str) -> Invitation:
    invitation = db.session.get(Invitation, invitation_id) if invitation_id else None
    if invitation is None:
        raise NotFound(f"Invitation {invitation_id} not found")
    return invitation


def create_invitation(
    owner_id: str,
    folder_id: str,
    reviewer_contact: str,
    permission: Permission | None = None,
    now: datetime | None = None,
) -> Invitation:
    """
    Invite a reviewer, by contact, to a folder.

    Args:
        owner_id: Caller; must own the folder
        folder_id: Folder being shared
        reviewer_contact: Reviewer email (stored trimmed and lower-cased)
        permission: Permission granted on acceptance (default: upload + comment)
        now: Send time override

    Returns:
        Invitation: The pending invitation

    Raises:
        Forbidden: If the caller does not own the folder
        ValueError: If the contact is not an email address
    """
    folder = require_owner(folder_id, owner_id)
    contact = _clean_contact(reviewer_contact)
    permission = permission or DEFAULT_PERMISSION
    sent_at = now or utcnow()

    invitation = Invitation(
        folder_id=folder.id,
        folder_name=folder.name,
        owner_id=owner_id,
        owner_name=display_name_for(owner_id),
        reviewer_contact=contact,
        can_upload=permission.can_upload,
        can_comment=permission.can_comment,
        can_delete=permission.can_delete,
        status=InvitationStatus.PENDING,
        sent_at=sent_at,
        expires_at=sent_at + invitation_ttl(),
    )
    db.session.add(invitation)
    db.session.commit()
    logger.info(
        "invitation_created",
        invitation_id=invitation.id,
        folder_id=folder.id,
        owner_id=owner_id,
    )

    notifications.notify_invitation_sent(invitation)
    return invitation


def _require_answerable(invitation: Invitation, now: datetime, reviewer_contact: str | None):
    if invitation.status != InvitationStatus.PENDING:
        raise Forbidden(f"Invitation already {invitation.status.value}")
    if invitation.is_expired(now):
        raise Expired(f"Invitation expired at {invitation.expires_at.isoformat()}")
    if reviewer_contact is not None:
        if normalize_contact(reviewer_contact) != invitation.reviewer_contact:
            raise Forbidden("Invitation was addressed to someone else")


def accept_invitation(
    invitation_id: str,
    reviewer_id: str,
    permission: Permission | None = None,
    reviewer_contact: str | None = None,
    now: datetime | None = None,
) -> Invitation:
    """
    Accept a pending invitation and grant folder access in one transaction.

    If the grant fails nothing is committed and the invitation stays pending.

    Args:
        invitation_id: Invitation to accept
        reviewer_id: Principal accepting
        permission: Overrides the permission proposed by the owner
        reviewer_contact: Caller's verified contact; must match when given
        now: Acceptance time override

    Returns:
        Invitation: The accepted invitation

    Raises:
        NotFound: If the invitation does not exist
        Forbidden: If it is not pending or addressed to another contact
        Expired: If it is past expires_at
    """
    invitation = get_invitation(invitation_id)
    now = now or utcnow()
    _require_answerable(invitation, now, reviewer_contact)

    try:
        grant_access(
            invitation.folder_id,
            reviewer_id,
            permission or invitation.permission,
            requested_by=invitation.owner_id,
            commit=False,
        )
        invitation.status = InvitationStatus.ACCEPTED
        invitation.reviewer_id = reviewer_id
        invitation.accepted_at = now
        invitation.responded_at = now
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning(
            "invitation_accept_failed", invitation_id=invitation_id, reviewer_id=reviewer_id
        )
        raise

    logger.info(
        "invitation_accepted",
        invitation_id=invitation_id,
        folder_id=invitation.folder_id,
        reviewer_id=reviewer_id,
    )
    return invitation


def decline_invitation(
    invitation_id: str,
    reviewer_contact: str | None = None,
    now: datetime | None = None,
) -> Invitation:
    """
    Decline a pending invitation. The folder is not touched.

    Raises:
        NotFound: If the invitation does not exist
        Forbidden: If it is not pending or addressed to another contact
        Expired: If it is past expires_at
    """
    invitation = get_invitation(invitation_id)
    now = now or utcnow()
    _require_answerable(invitation, now, reviewer_contact)

    invitation.status = InvitationStatus.DECLINED
    invitation.responded_at = now
    db.session.commit()
    logger.info("invitation_declined", invitation_id=invitation_id)
    return invitation


def list_pending_invitations(reviewer_contact: str, now: datetime | None = None) -> list[Invitation]:
    """Answerable invitations addressed to a contact, newest first."""
    contact = normalize_contact(reviewer_contact)
    if not contact:
        return []
    return list(
        db.session.execute(
            select(Invitation)
            .where(
                Invitation.reviewer_contact == contact,
                Invitation.status == InvitationStatus.PENDING,
                Invitation.expires_at > (now or utcnow()),
            )
            .order_by(Invitation.sent_at.desc())
        ).scalars()
    )


def list_folder_invitations(folder_id: str, requested_by: str) -> list[Invitation]:
    """Every invitation of a folder, any status, newest first (owner only)."""
    folder = require_owner(folder_id, requested_by)
    return list(
        db.session.execute(
            select(Invitation)
            .where(Invitation.folder_id == folder.id)
            .order_by(Invitation.sent_at.desc())
        ).scalars()
    )


def purge_expired_invitations(older_than: timedelta, now: datetime | None = None) -> int:
    """
    Physically remove pending invitations that expired more than ``older_than`` ago.

    Expired invitations are already inert; this only keeps the table small.

    Returns:
        int: Number of rows deleted
    """
    cutoff = (now or utcnow()) - older_than
    result = db.session.execute(
        delete(Invitation)
        .where(
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at < cutoff,
        )
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    deleted = result.rowcount or 0
    logger.info("expired_invitations_purged", deleted=deleted, cutoff=cutoff.isoformat())
    return deleted

"""
Database models for Dugout.

This module contains all SQLAlchemy models defining the database schema
for profiles, synced tracking records, folders and their permission
entries, invitations, videos, annotations and the notification outbox.

Identifiers are opaque strings: principal ids come from the upstream
authentication gateway and every other id is a server-generated UUID.
Timestamps are naive UTC.
"""
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum

from flask_sqlalchemy import SQLAlchemy

# Initialize SQLAlchemy instance
db = SQLAlchemy()


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (database convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _enum_column(enum_cls, name: str, **kwargs):
    return db.Column(
        db.Enum(
            enum_cls,
            name=name,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        **kwargs,
    )


class UserRole(Enum):
    """
    Enumeration for the role a principal plays.

    - ATHLETE: Owns folders and private tracking records
    - COACH: Reviews folders shared with them
    """

    ATHLETE = "athlete"
    COACH = "coach"


class EntityType(Enum):
    """
    Enumeration for owner-authored tracking entities kept in the record store.

    All four share the same versioned contract; their fields are opaque
    payload to the store.
    """

    ATHLETE = "athlete"
    SEASON = "season"
    GAME = "game"
    PRACTICE = "practice"


class RecordState(Enum):
    """
    Lifecycle state of a synced record.

    - ACTIVE: Visible in listings and mutable
    - DELETED: Soft-deleted tombstone; kept until account deletion purges it
    """

    ACTIVE = "active"
    DELETED = "deleted"


class UploaderType(Enum):
    """
    Enumeration for who uploaded a video relative to its folder.

    - OWNER: The folder owner
    - REVIEWER: A reviewer holding upload permission
    """

    OWNER = "owner"
    REVIEWER = "reviewer"


class VideoType(Enum):
    """
    Enumeration for the kind of recording.

    Only HIGHLIGHT videos carry a high-quality thumbnail variant.
    """

    GAME = "game"
    PRACTICE = "practice"
    HIGHLIGHT = "highlight"


class InvitationStatus(Enum):
    """
    Enumeration for invitation states.

    - PENDING: Sent, awaiting a response (inert once past expires_at)
    - ACCEPTED: Terminal; the reviewer was granted access
    - DECLINED: Terminal; no folder mutation happened
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class NotificationKind(Enum):
    """
    Enumeration for out-of-band notification events.

    - INVITATION_SENT: A reviewer was invited to a folder
    - ACCESS_REVOKED: A reviewer's folder access was removed
    """

    INVITATION_SENT = "invitation_sent"
    ACCESS_REVOKED = "access_revoked"


class Capability(Enum):
    """Folder capabilities a permission entry can carry."""

    UPLOAD = "can_upload"
    COMMENT = "can_comment"
    DELETE = "can_delete"


@dataclass(frozen=True)
class Permission:
    """
    A reviewer's capabilities on one folder.

    Absence of a permission entry means no access at all; a present entry
    always grants read access to the folder's videos and annotations.
    """

    can_upload: bool = True
    can_comment: bool = True
    can_delete: bool = False

    def allows(self, capability: Capability) -> bool:
        return bool(getattr(self, capability.value))

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None, base: "Permission | None" = None):
        """Build a permission from a partial mapping, filling gaps from ``base``.

        Raises:
            ValueError: If a provided flag is not a boolean
        """
        base = base or DEFAULT_PERMISSION
        values = base.to_dict()
        for key, value in (data or {}).items():
            if key not in values:
                continue
            if not isinstance(value, bool):
                raise ValueError(f"Permission flag {key} must be a boolean")
            values[key] = value
        return cls(**values)


DEFAULT_PERMISSION = Permission(can_upload=True, can_comment=True, can_delete=False)
VIEW_ONLY_PERMISSION = Permission(can_upload=False, can_comment=True, can_delete=False)
FULL_PERMISSION = Permission(can_upload=True, can_comment=True, can_delete=True)


class UserProfile(db.Model):
    """
    Directory entry for an authenticated principal.

    Mirrors what the authentication gateway supplies so names and contacts
    can be denormalized onto invitations and notifications.
    """

    __tablename__ = "user_profiles"

    id = db.Column(db.String(128), primary_key=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    display_name = db.Column(db.String(255), nullable=True)
    role = _enum_column(UserRole, "userrole", nullable=False, default=UserRole.ATHLETE)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<UserProfile {self.id} ({self.role.value})>"

    @property
    def name(self) -> str:
        return self.display_name or self.email or self.id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role.value,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class SyncedRecord(db.Model):
    """
    Owner-authored tracking entity (athlete, season, game, practice).

    Rows are versioned for optimistic concurrency: every mutation bumps
    ``version`` by one and writes carrying an older version are rejected.
    Deletion flips ``is_deleted``; rows are only physically removed when the
    owner's account is deleted.
    """

    __tablename__ = "synced_records"
    __table_args__ = (
        db.UniqueConstraint(
            "owner_id", "entity_type", "local_id", name="uq_record_owner_type_local"
        ),
        db.Index("ix_records_owner_type_created", "owner_id", "entity_type", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    owner_id = db.Column(db.String(128), nullable=False, index=True)
    entity_type = _enum_column(EntityType, "entitytype", nullable=False)
    # Client-generated stable identifier; makes create retries idempotent
    local_id = db.Column(db.String(64), nullable=False)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    version = db.Column(db.Integer, nullable=False, default=1)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<SyncedRecord {self.entity_type.value} {self.id} v{self.version}>"

    @property
    def state(self) -> RecordState:
        return RecordState.DELETED if self.is_deleted else RecordState.ACTIVE

    def to_dict(self) -> dict:
        """Convert record to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "local_id": self.local_id,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type.value,
            "payload": dict(self.payload or {}),
            "version": self.version,
            "state": self.state.value,
            "is_deleted": self.is_deleted,
            "deleted_at": _iso(self.deleted_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Folder(db.Model):
    """
    Shareable container of videos owned by one principal.

    The reviewer set and the permission map are both views over the
    ``grants`` rows, so they can never disagree.
    """

    __tablename__ = "folders"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    owner_id = db.Column(db.String(128), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    video_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    grants = db.relationship(
        "FolderPermission",
        back_populates="folder",
        lazy="selectin",
        order_by="FolderPermission.granted_at",
    )

    def __repr__(self) -> str:
        return f"<Folder {self.name} ({self.id})>"

    @property
    def permissions(self) -> dict[str, Permission]:
        """Reviewer id to permission mapping."""
        return {grant.reviewer_id: grant.permission for grant in self.grants}

    @property
    def reviewer_ids(self) -> set[str]:
        return {grant.reviewer_id for grant in self.grants}

    def is_owned_by(self, principal_id: str) -> bool:
        return self.owner_id == principal_id

    def to_dict(self, include_permissions: bool = True) -> dict:
        """Convert folder to dictionary for JSON serialization.

        Args:
            include_permissions: Include the reviewer permission map. Only the
                owner should see other reviewers' entries.
        """
        data = {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "video_count": self.video_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_permissions:
            data["permissions"] = {
                reviewer_id: permission.to_dict()
                for reviewer_id, permission in self.permissions.items()
            }
            data["reviewer_ids"] = sorted(self.reviewer_ids)
        return data


class FolderPermission(db.Model):
    """Permission entry for one (folder, reviewer) pair."""

    __tablename__ = "folder_permissions"
    __table_args__ = (
        db.UniqueConstraint("folder_id", "reviewer_id", name="uq_folder_reviewer"),
    )

    id = db.Column(db.Integer, primary_key=True)
    folder_id = db.Column(
        db.String(36), db.ForeignKey("folders.id"), nullable=False, index=True
    )
    reviewer_id = db.Column(db.String(128), nullable=False, index=True)
    can_upload = db.Column(db.Boolean, nullable=False, default=True)
    can_comment = db.Column(db.Boolean, nullable=False, default=True)
    can_delete = db.Column(db.Boolean, nullable=False, default=False)
    granted_by_id = db.Column(db.String(128), nullable=True)
    granted_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    folder = db.relationship("Folder", back_populates="grants")

    def __repr__(self) -> str:
        return f"<FolderPermission {self.reviewer_id} → Folder {self.folder_id}>"

    @property
    def permission(self) -> Permission:
        return Permission(
            can_upload=bool(self.can_upload),
            can_comment=bool(self.can_comment),
            can_delete=bool(self.can_delete),
        )

    def apply(self, permission: Permission) -> None:
        self.can_upload = permission.can_upload
        self.can_comment = permission.can_comment
        self.can_delete = permission.can_delete


class Invitation(db.Model):
    """
    Invitation for a reviewer to access a folder.

    Folder and owner names are snapshots taken at send time so the
    invitation stays readable if the folder is renamed or the owner's
    account disappears. A pending invitation past ``expires_at`` is inert.
    """

    __tablename__ = "invitations"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    folder_id = db.Column(
        db.String(36), db.ForeignKey("folders.id"), nullable=False, index=True
    )
    folder_name = db.Column(db.String(128), nullable=False)
    owner_id = db.Column(db.String(128), nullable=False, index=True)
    owner_name = db.Column(db.String(255), nullable=False)
    reviewer_contact = db.Column(db.String(255), nullable=False, index=True)
    # Set once a reviewer accepts
    reviewer_id = db.Column(db.String(128), nullable=True)

    # Permission proposed by the owner
    can_upload = db.Column(db.Boolean, nullable=False, default=True)
    can_comment = db.Column(db.Boolean, nullable=False, default=True)
    can_delete = db.Column(db.Boolean, nullable=False, default=False)

    status = _enum_column(
        InvitationStatus,
        "invitationstatus",
        nullable=False,
        default=InvitationStatus.PENDING,
        index=True,
    )
    sent_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    accepted_at = db.Column(db.DateTime, nullable=True)
    responded_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Invitation {self.reviewer_contact} → Folder {self.folder_id} "
            f"({self.status.value})>"
        )

    @property
    def permission(self) -> Permission:
        return Permission(
            can_upload=bool(self.can_upload),
            can_comment=bool(self.can_comment),
            can_delete=bool(self.can_delete),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_valid(self, now: datetime | None = None) -> bool:
        """Check if invitation can still be answered (pending and not expired)."""
        return self.status == InvitationStatus.PENDING and not self.is_expired(now)

    def to_dict(self) -> dict:
        """Convert invitation to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "folder_id": self.folder_id,
            "folder_name": self.folder_name,
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "reviewer_contact": self.reviewer_contact,
            "reviewer_id": self.reviewer_id,
            "permission": self.permission.to_dict(),
            "status": self.status.value,
            "sent_at": _iso(self.sent_at),
            "expires_at": _iso(self.expires_at),
            "accepted_at": _iso(self.accepted_at),
            "responded_at": _iso(self.responded_at),
            "is_expired": self.is_expired(),
        }


class Video(db.Model):
    """
    Metadata for an uploaded recording.

    Rows are created only after the binary upload completed and are never
    updated in place except for the orphan flag, which is set when the
    uploader's account is deleted while the video stays in someone else's
    folder.
    """

    __tablename__ = "videos"
    __table_args__ = (db.Index("ix_videos_folder_created", "folder_id", "created_at"),)

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    folder_id = db.Column(db.String(36), db.ForeignKey("folders.id"), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    blob_ref = db.Column(db.String(512), nullable=False)

    # Thumbnail variants; the high-quality one only exists for highlights
    thumbnail_ref = db.Column(db.String(512), nullable=True)
    thumbnail_hq_ref = db.Column(db.String(512), nullable=True)
    thumbnail_timestamp = db.Column(db.Float, nullable=True)
    thumbnail_width = db.Column(db.Integer, nullable=True)
    thumbnail_height = db.Column(db.Integer, nullable=True)

    uploaded_by_id = db.Column(db.String(128), nullable=False, index=True)
    uploaded_by_name = db.Column(db.String(255), nullable=False)
    uploader_type = _enum_column(UploaderType, "uploadertype", nullable=False)

    size_bytes = db.Column(db.BigInteger, nullable=False, default=0)
    duration = db.Column(db.Float, nullable=True)
    video_type = _enum_column(VideoType, "videotype", nullable=False)
    # Game/practice context: opponent, game date, practice date, notes
    context = db.Column(db.JSON, nullable=False, default=dict)

    is_orphaned = db.Column(db.Boolean, nullable=False, default=False)
    orphaned_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    folder = db.relationship("Folder")

    def __repr__(self) -> str:
        return f"<Video {self.file_name} ({self.id})>"

    @property
    def is_highlight(self) -> bool:
        return self.video_type == VideoType.HIGHLIGHT

    @property
    def uploader_display_name(self) -> str:
        if self.is_orphaned and self.uploader_type == UploaderType.REVIEWER:
            return f"{self.uploaded_by_name} (Former Coach)"
        return self.uploaded_by_name

    @property
    def blob_refs(self) -> list[str]:
        """All blob references owned by this video, video first."""
        return [
            ref
            for ref in (self.blob_ref, self.thumbnail_ref, self.thumbnail_hq_ref)
            if ref
        ]

    def thumbnail_dict(self) -> dict | None:
        if not self.thumbnail_ref:
            return None
        return {
            "standard_ref": self.thumbnail_ref,
            "high_quality_ref": self.thumbnail_hq_ref,
            "timestamp": self.thumbnail_timestamp,
            "width": self.thumbnail_width,
            "height": self.thumbnail_height,
        }

    def to_dict(self) -> dict:
        """Convert video to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "folder_id": self.folder_id,
            "file_name": self.file_name,
            "blob_ref": self.blob_ref,
            "thumbnail": self.thumbnail_dict(),
            "uploaded_by": self.uploaded_by_id,
            "uploaded_by_name": self.uploader_display_name,
            "uploaded_by_type": self.uploader_type.value,
            "size_bytes": self.size_bytes,
            "duration": self.duration,
            "video_type": self.video_type.value,
            "is_highlight": self.is_highlight,
            "context": dict(self.context or {}),
            "is_orphaned": self.is_orphaned,
            "orphaned_at": _iso(self.orphaned_at),
            "created_at": _iso(self.created_at),
        }


class Annotation(db.Model):
    """
    Timestamped comment on a video.

    Always listed by ``timestamp_seconds`` ascending, never by creation time.
    Only the author may remove an annotation.
    """

    __tablename__ = "annotations"
    __table_args__ = (
        db.Index("ix_annotations_video_timestamp", "video_id", "timestamp_seconds"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    video_id = db.Column(db.String(36), db.ForeignKey("videos.id"), nullable=False)
    author_id = db.Column(db.String(128), nullable=False, index=True)
    author_name = db.Column(db.String(255), nullable=False)
    timestamp_seconds = db.Column(db.Float, nullable=False)
    text = db.Column(db.Text, nullable=False)
    is_reviewer_comment = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Annotation {self.id} @{self.timestamp_seconds}s>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "video_id": self.video_id,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "timestamp_seconds": self.timestamp_seconds,
            "text": self.text,
            "is_reviewer_comment": self.is_reviewer_comment,
            "created_at": _iso(self.created_at),
        }


class NotificationEvent(db.Model):
    """
    Outbox row for an out-of-band notification.

    Context is fully denormalized (folder name, owner name, recipient
    contact) so delivery never needs a join and survives account deletion.
    """

    __tablename__ = "notification_events"

    id = db.Column(db.Integer, primary_key=True)
    kind = _enum_column(NotificationKind, "notificationkind", nullable=False, index=True)
    recipient_id = db.Column(db.String(128), nullable=True, index=True)
    recipient_contact = db.Column(db.String(255), nullable=True)
    context = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    delivered_at = db.Column(db.DateTime, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    def __repr__(self) -> str:
        return f"<NotificationEvent {self.kind.value} → {self.recipient_contact}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "recipient_id": self.recipient_id,
            "recipient_contact": self.recipient_contact,
            "context": dict(self.context or {}),
            "created_at": _iso(self.created_at),
            "delivered_at": _iso(self.delivered_at),
            "attempts": self.attempts,
            "last_error": self.last_error,
        }

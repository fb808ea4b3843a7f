"""initial_schema

Revision ID: 4d2a9c1e7b30
Revises:
Create Date: 2026-10-19 09:12:04.118420

"""
import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "4d2a9c1e7b30"
down_revision = None
branch_labels = None
depends_on = None


def _enum(name, *values):
    return sa.Enum(*values, name=name)


def upgrade():
    op.create_table(
        "user_profiles",
        sa.Column("id", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("role", _enum("userrole", "athlete", "coach"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_profiles_email", "user_profiles", ["email"], unique=False)

    op.create_table(
        "synced_records",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column(
            "entity_type",
            _enum("entitytype", "athlete", "season", "game", "practice"),
            nullable=False,
        ),
        sa.Column("local_id", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "owner_id", "entity_type", "local_id", name="uq_record_owner_type_local"
        ),
    )
    op.create_index("ix_synced_records_owner_id", "synced_records", ["owner_id"], unique=False)
    op.create_index(
        "ix_synced_records_updated_at", "synced_records", ["updated_at"], unique=False
    )
    op.create_index(
        "ix_records_owner_type_created",
        "synced_records",
        ["owner_id", "entity_type", "created_at"],
        unique=False,
    )

    op.create_table(
        "folders",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("video_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_folders_owner_id", "folders", ["owner_id"], unique=False)

    op.create_table(
        "folder_permissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("folder_id", sa.String(length=36), nullable=False),
        sa.Column("reviewer_id", sa.String(length=128), nullable=False),
        sa.Column("can_upload", sa.Boolean(), nullable=False),
        sa.Column("can_comment", sa.Boolean(), nullable=False),
        sa.Column("can_delete", sa.Boolean(), nullable=False),
        sa.Column("granted_by_id", sa.String(length=128), nullable=True),
        sa.Column("granted_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["folder_id"], ["folders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("folder_id", "reviewer_id", name="uq_folder_reviewer"),
    )
    op.create_index(
        "ix_folder_permissions_folder_id", "folder_permissions", ["folder_id"], unique=False
    )
    op.create_index(
        "ix_folder_permissions_reviewer_id", "folder_permissions", ["reviewer_id"], unique=False
    )

    op.create_table(
        "invitations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("folder_id", sa.String(length=36), nullable=False),
        sa.Column("folder_name", sa.String(length=128), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("owner_name", sa.String(length=255), nullable=False),
        sa.Column("reviewer_contact", sa.String(length=255), nullable=False),
        sa.Column("reviewer_id", sa.String(length=128), nullable=True),
        sa.Column("can_upload", sa.Boolean(), nullable=False),
        sa.Column("can_comment", sa.Boolean(), nullable=False),
        sa.Column("can_delete", sa.Boolean(), nullable=False),
        sa.Column(
            "status",
            _enum("invitationstatus", "pending", "accepted", "declined"),
            nullable=False,
        ),
        sa.Column("sent_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        sa.Column("responded_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["folder_id"], ["folders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_invitations_folder_id", "invitations", ["folder_id"], unique=False)
    op.create_index("ix_invitations_owner_id", "invitations", ["owner_id"], unique=False)
    op.create_index(
        "ix_invitations_reviewer_contact", "invitations", ["reviewer_contact"], unique=False
    )
    op.create_index("ix_invitations_status", "invitations", ["status"], unique=False)

    op.create_table(
        "videos",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("folder_id", sa.String(length=36), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("blob_ref", sa.String(length=512), nullable=False),
        sa.Column("thumbnail_ref", sa.String(length=512), nullable=True),
        sa.Column("thumbnail_hq_ref", sa.String(length=512), nullable=True),
        sa.Column("thumbnail_timestamp", sa.Float(), nullable=True),
        sa.Column("thumbnail_width", sa.Integer(), nullable=True),
        sa.Column("thumbnail_height", sa.Integer(), nullable=True),
        sa.Column("uploaded_by_id", sa.String(length=128), nullable=False),
        sa.Column("uploaded_by_name", sa.String(length=255), nullable=False),
        sa.Column("uploader_type", _enum("uploadertype", "owner", "reviewer"), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column(
            "video_type", _enum("videotype", "game", "practice", "highlight"), nullable=False
        ),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("is_orphaned", sa.Boolean(), nullable=False),
        sa.Column("orphaned_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["folder_id"], ["folders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_videos_uploaded_by_id", "videos", ["uploaded_by_id"], unique=False)
    op.create_index(
        "ix_videos_folder_created", "videos", ["folder_id", "created_at"], unique=False
    )

    op.create_table(
        "annotations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("video_id", sa.String(length=36), nullable=False),
        sa.Column("author_id", sa.String(length=128), nullable=False),
        sa.Column("author_name", sa.String(length=255), nullable=False),
        sa.Column("timestamp_seconds", sa.Float(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("is_reviewer_comment", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["video_id"], ["videos.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_annotations_author_id", "annotations", ["author_id"], unique=False)
    op.create_index(
        "ix_annotations_video_timestamp",
        "annotations",
        ["video_id", "timestamp_seconds"],
        unique=False,
    )

    op.create_table(
        "notification_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "kind",
            _enum("notificationkind", "invitation_sent", "access_revoked"),
            nullable=False,
        ),
        sa.Column("recipient_id", sa.String(length=128), nullable=True),
        sa.Column("recipient_contact", sa.String(length=255), nullable=True),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notification_events_kind", "notification_events", ["kind"], unique=False
    )
    op.create_index(
        "ix_notification_events_recipient_id",
        "notification_events",
        ["recipient_id"],
        unique=False,
    )


def downgrade():
    op.drop_table("notification_events")
    op.drop_table("annotations")
    op.drop_table("videos")
    op.drop_table("invitations")
    op.drop_table("folder_permissions")
    op.drop_table("folders")
    op.drop_table("synced_records")
    op.drop_table("user_profiles")

    bind = op.get_bind()
    for name in (
        "notificationkind",
        "videotype",
        "uploadertype",
        "invitationstatus",
        "entitytype",
        "userrole",
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)

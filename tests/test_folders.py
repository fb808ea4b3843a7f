"""
Tests for the folder and permission registry.
"""
import pytest
from conftest import OUTSIDER_ID, OWNER_ID, REVIEWER_EMAIL, REVIEWER_ID

from dugout import folders
from dugout.errors import Forbidden, NotFound
from dugout.models import (
    DEFAULT_PERMISSION,
    FULL_PERMISSION,
    VIEW_ONLY_PERMISSION,
    Annotation,
    Capability,
    Folder,
    FolderPermission,
    Invitation,
    NotificationEvent,
    NotificationKind,
    Permission,
    Video,
    db,
)


class TestCreateFolder:
    def test_new_folder_is_empty(self, ctx):
        folder = folders.create_folder(OWNER_ID, "  Spring Season  ")
        assert folder.name == "Spring Season"
        assert folder.video_count == 0
        assert folder.permissions == {}
        assert folder.owner_id == OWNER_ID

    def test_name_is_required(self, ctx):
        with pytest.raises(ValueError):
            folders.create_folder(OWNER_ID, "   ")

    def test_name_length_is_bounded(self, ctx):
        with pytest.raises(ValueError):
            folders.create_folder(OWNER_ID, "x" * 129)


class TestGrantAccess:
    """Test owner-only permission management."""

    def test_owner_grants_reviewer(self, ctx, folder_id):
        folders.grant_access(folder_id, REVIEWER_ID, VIEW_ONLY_PERMISSION, requested_by=OWNER_ID)
        folder = folders.get_folder(folder_id)
        assert folder.permissions == {REVIEWER_ID: VIEW_ONLY_PERMISSION}

    def test_grant_replaces_existing_entry(self, ctx, folder_id):
        folders.grant_access(folder_id, REVIEWER_ID, DEFAULT_PERMISSION, requested_by=OWNER_ID)
        folders.grant_access(folder_id, REVIEWER_ID, FULL_PERMISSION, requested_by=OWNER_ID)
        assert db.session.query(FolderPermission).count() == 1
        assert folders.get_effective_permission(folder_id, REVIEWER_ID) == FULL_PERMISSION

    def test_non_owner_cannot_grant(self, ctx, shared_folder_id):
        """A reviewer, even with full permission, cannot grant access."""
        folders.grant_access(shared_folder_id, REVIEWER_ID, FULL_PERMISSION, requested_by=OWNER_ID)
        with pytest.raises(Forbidden):
            folders.grant_access(
                shared_folder_id, OUTSIDER_ID, DEFAULT_PERMISSION, requested_by=REVIEWER_ID
            )
        assert OUTSIDER_ID not in folders.get_folder(shared_folder_id).permissions

    def test_owner_cannot_be_reviewer(self, ctx, folder_id):
        with pytest.raises(ValueError):
            folders.grant_access(folder_id, OWNER_ID, DEFAULT_PERMISSION, requested_by=OWNER_ID)

    def test_missing_folder(self, ctx):
        with pytest.raises(NotFound):
            folders.grant_access("nope", REVIEWER_ID, DEFAULT_PERMISSION, requested_by=OWNER_ID)


class TestEffectivePermission:
    def test_owner_has_full_permission(self, ctx, folder_id):
        assert folders.get_effective_permission(folder_id, OWNER_ID) == FULL_PERMISSION

    def test_stranger_has_none(self, ctx, folder_id):
        assert folders.get_effective_permission(folder_id, OUTSIDER_ID) is None

    def test_read_access_hides_folder_from_strangers(self, ctx, folder_id):
        with pytest.raises(NotFound):
            folders.require_read_access(folder_id, OUTSIDER_ID)

    def test_require_permission_checks_capability(self, ctx, folder_id):
        folders.grant_access(folder_id, REVIEWER_ID, VIEW_ONLY_PERMISSION, requested_by=OWNER_ID)
        folders.require_permission(folder_id, REVIEWER_ID, Capability.COMMENT)
        with pytest.raises(Forbidden):
            folders.require_permission(folder_id, REVIEWER_ID, Capability.UPLOAD)
        with pytest.raises(Forbidden):
            folders.require_permission(folder_id, OUTSIDER_ID, Capability.COMMENT)


class TestRevokeAccess:
    """Test revocation and its notification."""

    def test_revoke_removes_entry_and_queues_notice(self, ctx, shared_folder_id):
        folders.revoke_access(shared_folder_id, REVIEWER_ID, requested_by=OWNER_ID)

        assert REVIEWER_ID not in folders.get_folder(shared_folder_id).permissions
        events = (
            db.session.query(NotificationEvent)
            .filter_by(kind=NotificationKind.ACCESS_REVOKED)
            .all()
        )
        assert len(events) == 1
        event = events[0]
        assert event.recipient_id == REVIEWER_ID
        assert event.recipient_contact == REVIEWER_EMAIL
        assert event.context["folder_name"] == "Spring Season"
        assert event.context["owner_name"] == "Alex Athlete"

    def test_non_owner_cannot_revoke(self, ctx, shared_folder_id):
        with pytest.raises(Forbidden):
            folders.revoke_access(shared_folder_id, REVIEWER_ID, requested_by=REVIEWER_ID)
        assert REVIEWER_ID in folders.get_folder(shared_folder_id).permissions

    def test_revoke_unknown_reviewer(self, ctx, folder_id):
        with pytest.raises(NotFound):
            folders.revoke_access(folder_id, REVIEWER_ID, requested_by=OWNER_ID)

    def test_revoke_succeeds_when_notification_fails(self, ctx, shared_folder_id, monkeypatch):
        """A broken notification channel never undoes the revocation."""
        from dugout import notifications

        def _boom(*args, **kwargs):
            raise ConnectionError("mail relay down")

        monkeypatch.setattr(notifications, "deliver_notification", _boom)
        folders.revoke_access(shared_folder_id, REVIEWER_ID, requested_by=OWNER_ID)
        assert REVIEWER_ID not in folders.get_folder(shared_folder_id).permissions


class TestListAndRename:
    def test_list_for_owner_and_reviewer(self, ctx, shared_folder_id):
        other = folders.create_folder(OWNER_ID, "Private")
        owned = folders.list_folders_for_owner(OWNER_ID)
        shared = folders.list_folders_for_reviewer(REVIEWER_ID)
        assert [f.id for f in owned] == [shared_folder_id, other.id]
        assert [f.id for f in shared] == [shared_folder_id]

    def test_only_owner_renames(self, ctx, shared_folder_id):
        with pytest.raises(Forbidden):
            folders.rename_folder(shared_folder_id, "Mine now", requested_by=REVIEWER_ID)
        assert folders.rename_folder(shared_folder_id, "Fall", OWNER_ID).name == "Fall"


class TestDeleteFolder:
    """Test cascading folder deletion."""

    def test_delete_removes_everything_underneath(self, ctx, shared_folder_id, video_id):
        from dugout.annotations import add_annotation
        from dugout.invitations import create_invitation
        from dugout.storage import get_storage

        add_annotation(video_id, REVIEWER_ID, "Casey Coach", 3.0, "Nice pass")
        create_invitation(OWNER_ID, shared_folder_id, "assistant@example.com")
        blob_ref = db.session.get(Video, video_id).blob_ref
        assert get_storage().exists(blob_ref)

        folders.delete_folder(shared_folder_id, requested_by=OWNER_ID)

        assert db.session.get(Folder, shared_folder_id) is None
        assert db.session.query(Video).count() == 0
        assert db.session.query(Annotation).count() == 0
        assert db.session.query(Invitation).count() == 0
        assert db.session.query(FolderPermission).count() == 0
        assert not get_storage().exists(blob_ref)

    def test_only_owner_deletes(self, ctx, shared_folder_id):
        folders.grant_access(shared_folder_id, REVIEWER_ID, FULL_PERMISSION, requested_by=OWNER_ID)
        with pytest.raises(Forbidden):
            folders.delete_folder(shared_folder_id, requested_by=REVIEWER_ID)
        assert db.session.get(Folder, shared_folder_id) is not None

    def test_permission_from_dict_rejects_non_bool(self):
        with pytest.raises(ValueError):
            Permission.from_dict({"can_upload": "yes"})

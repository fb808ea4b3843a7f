"""
Tests for account deletion.

Deleting an account removes what the principal owns and detaches them from
everything else; videos they uploaded into other owners' folders survive,
marked orphaned.
"""
import pytest
from conftest import OWNER_ID, REVIEWER_EMAIL, REVIEWER_ID

from dugout import annotations, cascade, folders, media
from dugout.errors import NotFound
from dugout.invitations import create_invitation
from dugout.models import (
    Annotation,
    Folder,
    FolderPermission,
    Invitation,
    NotificationEvent,
    SyncedRecord,
    UserProfile,
    Video,
    db,
)
from dugout.records import athletes, games
from dugout.storage import get_storage


@pytest.fixture()
def reviewer_upload_id(ctx, shared_folder_id):
    """A video the reviewer uploaded into the owner's folder."""
    video = media.upload_video(
        shared_folder_id, REVIEWER_ID, "Casey Coach", "film.mp4", b"coach-film"
    )
    return video.id


class TestDeleteReviewerAccount:
    """A coach leaves; the athlete's folder keeps the coach's uploads."""

    def test_reviewer_uploads_are_kept_and_orphaned(self, ctx, shared_folder_id, reviewer_upload_id):
        cascade.delete_account(REVIEWER_ID)

        video = db.session.get(Video, reviewer_upload_id)
        assert video is not None
        assert video.is_orphaned is True
        assert video.orphaned_at is not None
        assert video.to_dict()["uploaded_by_name"] == "Casey Coach (Former Coach)"
        assert get_storage().exists(video.blob_ref)
        assert db.session.get(Folder, shared_folder_id).video_count == 1

    def test_reviewer_grants_and_annotations_are_removed(self, ctx, shared_folder_id, video_id):
        annotations.add_annotation(video_id, REVIEWER_ID, "Casey", 1.0, "coach note")
        annotations.add_annotation(video_id, OWNER_ID, "Alex", 2.0, "own note")

        cascade.delete_account(REVIEWER_ID)

        assert REVIEWER_ID not in folders.get_folder(shared_folder_id).permissions
        remaining = annotations.list_annotations(video_id)
        assert [a.author_id for a in remaining] == [OWNER_ID]
        assert db.session.get(UserProfile, REVIEWER_ID) is None

    def test_open_feeds_see_annotations_disappear(self, ctx, video_id):
        annotations.add_annotation(video_id, REVIEWER_ID, "Casey", 1.0, "coach note")
        with annotations.subscribe(video_id) as sub:
            sub.get(timeout=1)
            cascade.delete_account(REVIEWER_ID)
            assert sub.get(timeout=1) == ()


class TestDeleteOwnerAccount:
    """An athlete leaves; everything they own goes."""

    def test_owned_tree_and_records_are_purged(self, ctx, shared_folder_id, video_id):
        annotations.add_annotation(video_id, REVIEWER_ID, "Casey", 1.0, "coach note")
        create_invitation(OWNER_ID, shared_folder_id, "assistant@example.com")
        athletes.create(OWNER_ID, "a1", {"name": "Sam"})
        record = games.create(OWNER_ID, "g1", {})
        games.soft_delete(OWNER_ID, record.id)
        blob_ref = db.session.get(Video, video_id).blob_ref

        result = cascade.delete_account(OWNER_ID)

        assert result.folder_ids == [shared_folder_id]
        assert result.video_ids == [video_id]
        assert db.session.query(Folder).count() == 0
        assert db.session.query(Video).count() == 0
        assert db.session.query(Annotation).count() == 0
        assert db.session.query(Invitation).count() == 0
        assert db.session.query(FolderPermission).count() == 0
        assert db.session.query(SyncedRecord).count() == 0
        assert not get_storage().exists(blob_ref)
        assert all(count == 0 for count in cascade.count_remaining(OWNER_ID).values())

    def test_other_owners_are_untouched(self, ctx, shared_folder_id):
        mine = folders.create_folder(REVIEWER_ID, "Coach's own")
        athletes.create(REVIEWER_ID, "r1", {})

        cascade.delete_account(OWNER_ID)

        assert db.session.get(Folder, mine.id) is not None
        assert len(athletes.list(REVIEWER_ID)) == 1
        with pytest.raises(NotFound):
            folders.get_folder(shared_folder_id)

    def test_sent_notifications_are_kept(self, ctx, folder_id):
        create_invitation(OWNER_ID, folder_id, REVIEWER_EMAIL)
        cascade.delete_account(OWNER_ID)
        event = db.session.query(NotificationEvent).one()
        assert event.context["owner_name"] == "Alex Athlete"

    def test_principal_id_is_required(self, ctx):
        with pytest.raises(ValueError):
            cascade.delete_account("")

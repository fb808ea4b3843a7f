"""
Tests for the principal directory.
"""
from unittest.mock import patch

from conftest import OWNER_EMAIL, OWNER_ID

from dugout.models import UserProfile, UserRole, db
from dugout.profiles import find_by_contact, upsert_profile


class TestUpsertProfile:
    """Test profile refresh from gateway headers."""

    def test_padded_name_matching_stored_name_does_not_write(self, ctx):
        """Header whitespace alone never counts as a change."""
        with patch.object(db.session, "commit") as commit:
            profile = upsert_profile(
                OWNER_ID, email=f"  {OWNER_EMAIL.upper()} ", display_name="  Alex Athlete  "
            )
        commit.assert_not_called()
        assert profile.display_name == "Alex Athlete"

    def test_new_name_is_stored_stripped(self, ctx):
        upsert_profile(OWNER_ID, display_name="  Alex A.  ")
        assert db.session.get(UserProfile, OWNER_ID).display_name == "Alex A."

    def test_blank_name_keeps_existing(self, ctx):
        with patch.object(db.session, "commit") as commit:
            upsert_profile(OWNER_ID, display_name="   ")
        commit.assert_not_called()
        assert db.session.get(UserProfile, OWNER_ID).display_name == "Alex Athlete"

    def test_created_profile_defaults_to_athlete(self, ctx):
        profile = upsert_profile("new-1", email="New@Example.com")
        assert profile.role == UserRole.ATHLETE
        assert find_by_contact("new@example.com").id == "new-1"

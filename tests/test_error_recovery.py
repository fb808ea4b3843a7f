"""
Tests for error recovery and graceful degradation.

Best-effort steps (video counter, blob cleanup, notification dispatch) must
never fail the primary operation; unexpected API failures return a sanitized
JSON body.
"""
from unittest.mock import patch

import pytest
from conftest import OWNER_ID

from dugout import media
from dugout.error_utils import handle_api_exception, safe_log_error
from dugout.errors import NotFound, UpstreamUnavailable
from dugout.models import Folder, Video, db
from dugout.storage import LocalBlobStorage


class TestErrorUtilities:
    """Test the error utility functions."""

    def test_safe_log_error_with_exception(self, app, caplog):
        """Test safe_log_error captures exception context."""
        with app.app_context():
            try:
                raise ValueError("Test error")
            except ValueError as e:
                safe_log_error(app.logger, "Operation failed", exc_info=e, folder_id="f1")

            record = next(r for r in caplog.records if "Operation failed" in r.message)
            assert record.error_context == {"folder_id": "f1"}
            assert record.exception_type == "ValueError"

    def test_handle_api_exception_returns_sanitized_body(self, app):
        with app.test_request_context("/api/folders"):
            body, status = handle_api_exception(app.logger, "boom", folder_id="f1")
            assert status == 500
            assert body["success"] is False
            assert "boom" not in body["error"]

            body, status = handle_api_exception(app.logger, "bad", status_code=400)
            assert status == 400
            assert body["error"] == "The request could not be completed."

    def test_unexpected_error_renders_json_500(self, app):
        app.config["PROPAGATE_EXCEPTIONS"] = False

        @app.route("/api/explode")
        def explode():
            raise RuntimeError("secret internals")

        rv = app.test_client().get("/api/explode", headers={"X-Request-ID": "req-1"})
        assert rv.status_code == 500
        body = rv.get_json()
        assert body["code"] == "internal_error"
        assert body["request_id"] == "req-1"
        assert "secret internals" not in body["error"]


class TestBestEffortSteps:
    """Failures in secondary steps do not undo the primary one."""

    def test_recount_repairs_counter(self, ctx, video_id, shared_folder_id):
        db.session.get(Folder, shared_folder_id).video_count = 7
        db.session.commit()
        assert media.recount_videos(shared_folder_id) == 1
        assert db.session.get(Folder, shared_folder_id).video_count == 1

    def test_blob_cleanup_failure_does_not_fail_delete(self, ctx, video_id):
        with patch.object(
            LocalBlobStorage, "delete", side_effect=UpstreamUnavailable("disk gone")
        ):
            media.delete_video(video_id, OWNER_ID)
        assert db.session.get(Video, video_id) is None
        with pytest.raises(NotFound):
            media.get_video(video_id)

import tempfile

import pytest
from flask import g, has_app_context
from flask.testing import FlaskClient

from config.settings import TestingConfig
from dugout import create_app
from dugout.models import db
from dugout.profiles import upsert_profile

OWNER_ID = "athlete-1"
OWNER_EMAIL = "athlete@example.com"
REVIEWER_ID = "coach-1"
REVIEWER_EMAIL = "coach@example.com"
OUTSIDER_ID = "outsider-1"
OUTSIDER_EMAIL = "outsider@example.com"


@pytest.fixture()
def app():
    # Blobs go to a temp data folder; the database is in-memory sqlite
    data_folder = tempfile.mkdtemp()
    config = type("TestConfig", (TestingConfig,), {"DATA_FOLDER": data_folder})
    flask_app = create_app(config)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        upsert_profile(OWNER_ID, email=OWNER_EMAIL, display_name="Alex Athlete", role="athlete")
        upsert_profile(REVIEWER_ID, email=REVIEWER_EMAIL, display_name="Casey Coach", role="coach")
        upsert_profile(OUTSIDER_ID, email=OUTSIDER_EMAIL, display_name="Olly Outsider")
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def ctx(app):
    """Push an application context for service-level tests."""
    with app.app_context():
        yield app


class _PerRequestIdentityClient(FlaskClient):
    """Test client that drops identity cached in ``g`` before each request.

    Fixtures built on ``ctx`` keep an app context pushed, which Flask reuses
    for test-client requests; without this, Flask-Login's cached user from
    the first request would authenticate every later one.
    """

    def open(self, *args, **kwargs):
        if has_app_context():
            g.pop("_login_user", None)
            g.pop("principal", None)
        return super().open(*args, **kwargs)


@pytest.fixture()
def client(app):
    app.test_client_class = _PerRequestIdentityClient
    return app.test_client()


@pytest.fixture()
def headers():
    """Build the identity headers the auth gateway would forward."""

    def _headers(principal_id=OWNER_ID, email=OWNER_EMAIL, name=None, role=None):
        h = {"X-Principal-ID": principal_id}
        if email:
            h["X-Principal-Email"] = email
        if name:
            h["X-Principal-Name"] = name
        if role:
            h["X-Principal-Role"] = role
        return h

    return _headers


@pytest.fixture()
def folder_id(ctx):
    """A folder owned by OWNER_ID."""
    from dugout.folders import create_folder

    return create_folder(OWNER_ID, "Spring Season").id


@pytest.fixture()
def shared_folder_id(ctx, folder_id):
    """OWNER_ID's folder with REVIEWER_ID granted upload + comment."""
    from dugout.folders import grant_access
    from dugout.models import DEFAULT_PERMISSION

    grant_access(folder_id, REVIEWER_ID, DEFAULT_PERMISSION, requested_by=OWNER_ID)
    return folder_id


@pytest.fixture()
def video_id(ctx, shared_folder_id):
    """A game video uploaded by the owner into the shared folder."""
    from dugout.media import ThumbnailUpload, upload_video

    video = upload_video(
        shared_folder_id,
        OWNER_ID,
        "Alex Athlete",
        "game1.mp4",
        b"video-bytes",
        thumbnails=ThumbnailUpload(standard=b"jpeg", timestamp=1.5, width=320, height=180),
        duration=90.0,
    )
    return video.id

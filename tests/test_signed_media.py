import time
from urllib.parse import parse_qs, urlsplit

from dugout.models import Video, db
from dugout.security import HmacUrlSigner, verify_signature
from dugout.security.signed_media import compute_signature


def _path_and_query(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.path}?{parts.query}"


def test_signed_media_happy_path(app, client, video_id):
    with app.app_context():
        from dugout.url_broker import UrlKind, get_broker

        video = db.session.get(Video, video_id)
        issued = get_broker().get_url(video.blob_ref, UrlKind.VIDEO)
    assert issued.url.startswith("http://media.test/api/media/signed/")
    # Fetch without principal headers
    rv = client.get(_path_and_query(issued.url))
    assert rv.status_code == 200
    assert rv.data == b"video-bytes"


def test_signed_media_expired_url(app, client, video_id):
    with app.app_context():
        video = db.session.get(Video, video_id)
        signer = HmacUrlSigner("testing-secret", clock=lambda: time.time() - 7200)
        url = signer.sign(video.blob_ref, 60)
    rv = client.get(url)
    assert rv.status_code == 403


def test_signed_media_tampered_ref_rejected(app, client, video_id, folder_id):
    with app.app_context():
        video = db.session.get(Video, video_id)
        signer = HmacUrlSigner("testing-secret")
        url = signer.sign(video.blob_ref, 60)
    query = urlsplit(url).query
    rv = client.get(f"/api/media/signed/{folder_id}/other.mp4?{query}")
    assert rv.status_code == 403


def test_signed_media_wrong_secret_rejected(app, client, video_id):
    with app.app_context():
        video = db.session.get(Video, video_id)
        url = HmacUrlSigner("someone-else").sign(video.blob_ref, 60)
    rv = client.get(url)
    assert rv.status_code == 403


def test_signed_media_missing_blob(app, client, folder_id):
    url = HmacUrlSigner("testing-secret").sign(f"{folder_id}/gone.mp4", 60)
    rv = client.get(url)
    assert rv.status_code == 404


def test_verify_signature_rules(app):
    now = 1_700_000_000
    sig = compute_signature("k", "f1/a.mp4", now + 60)
    assert verify_signature("f1/a.mp4", now + 60, sig, secret="k", now=now)
    assert not verify_signature("f1/a.mp4", now + 60, sig, secret="k", now=now + 60)
    assert not verify_signature("f1/b.mp4", now + 60, sig, secret="k", now=now)
    assert not verify_signature("f1/a.mp4", "soon", sig, secret="k", now=now)
    assert not verify_signature("f1/a.mp4", now + 60, None, secret="k", now=now)


def test_signer_query_shape():
    signer = HmacUrlSigner("k", base_url="https://cdn.example.com/", clock=lambda: 1000)
    url = signer.sign("f1/my clip.mp4", 30)
    parts = urlsplit(url)
    assert parts.netloc == "cdn.example.com"
    assert parts.path == "/api/media/signed/f1/my%20clip.mp4"
    params = parse_qs(parts.query)
    assert params["e"] == ["1030"]
    assert signer.verify("f1/my clip.mp4", 1030, params["sig"][0])


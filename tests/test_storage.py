"""
Tests for storage utilities.

Covers blob ref layout, path safety and the local blob store.
"""
import io
import os
import tempfile

import pytest

from dugout import storage
from dugout.errors import NotFound, UpstreamUnavailable


@pytest.fixture()
def blobs():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield storage.LocalBlobStorage(tmpdir)


class TestStoragePaths:
    """Test ref generation."""

    def test_data_root_uses_configured_folder(self, app):
        with app.app_context():
            assert storage.data_root() == app.config["DATA_FOLDER"]
            assert storage.get_storage().root == os.path.abspath(app.config["DATA_FOLDER"])

    def test_safe_file_name(self):
        assert storage.safe_file_name("game 1.mp4") == "game_1.mp4"
        assert storage.safe_file_name("../../etc/passwd") == "etc_passwd"
        with pytest.raises(ValueError):
            storage.safe_file_name("../")
        with pytest.raises(ValueError):
            storage.safe_file_name(None)

    def test_video_and_thumbnail_refs(self):
        assert storage.video_path("f1", "clip.mp4") == "f1/clip.mp4"
        assert storage.thumbnail_path("f1", "clip.mp4") == "f1/thumbnails/clip.mp4_thumbnail.jpg"
        assert (
            storage.thumbnail_path("f1", "clip.mp4", high_quality=True)
            == "f1/thumbnails/clip.mp4_thumbnail_hq.jpg"
        )
        assert storage.folder_id_for_ref("f1/thumbnails/x.jpg") == "f1"

    def test_blob_stem_is_unique_per_upload(self):
        first = storage.blob_stem("game 1.mp4")
        second = storage.blob_stem("game 1.mp4")
        assert first != second
        assert first.endswith("_game_1.mp4")
        assert storage.safe_file_name(first) == first


class TestLocalBlobStorage:
    """Test the filesystem blob store."""

    def test_put_bytes_and_stream(self, blobs):
        assert blobs.put_object("f1/a.mp4", b"abc") == "f1/a.mp4"
        blobs.put_object("f1/b.mp4", io.BytesIO(b"streamed"))
        assert blobs.exists("f1/a.mp4")
        assert blobs.size("f1/b.mp4") == len(b"streamed")
        assert not os.path.exists(blobs.resolve("f1/a.mp4") + ".part")

    def test_delete_is_idempotent(self, blobs):
        blobs.put_object("f1/a.mp4", b"abc")
        assert blobs.delete("f1/a.mp4") is True
        assert blobs.delete("f1/a.mp4") is False
        assert not blobs.exists("f1/a.mp4")

    def test_size_of_missing_blob(self, blobs):
        with pytest.raises(NotFound):
            blobs.size("f1/missing.mp4")

    @pytest.mark.parametrize("ref", ["", "/etc/passwd", "../outside.mp4", "f1/../../x", "f1\\x"])
    def test_refs_cannot_escape_root(self, blobs, ref):
        with pytest.raises(NotFound):
            blobs.resolve(ref)
        assert blobs.exists(ref) is False

    def test_write_failure_is_upstream_unavailable(self, blobs):
        blobs.put_object("f1", b"a file where a directory is needed")
        with pytest.raises(UpstreamUnavailable):
            blobs.put_object("f1/a.mp4", b"abc")

    def test_existing_blob_is_never_replaced(self, blobs):
        blobs.put_object("f1/a.mp4", b"original")
        with pytest.raises(FileExistsError):
            blobs.put_object("f1/a.mp4", b"replacement")
        with open(blobs.resolve("f1/a.mp4"), "rb") as fh:
            assert fh.read() == b"original"

    def test_in_flight_write_blocks_second_writer(self, blobs):
        os.makedirs(os.path.dirname(blobs.resolve("f1/a.mp4")))
        with open(blobs.resolve("f1/a.mp4") + ".part", "wb") as fh:
            fh.write(b"partial")
        with pytest.raises(FileExistsError):
            blobs.put_object("f1/a.mp4", b"second")
        assert os.path.exists(blobs.resolve("f1/a.mp4") + ".part")

"""
Blob storage.

Layout (refs are POSIX paths relative to the data root):
    Videos:     <folder_id>/<stem>
    Thumbnails: <folder_id>/thumbnails/<stem>_thumbnail.jpg
                <folder_id>/thumbnails/<stem>_thumbnail_hq.jpg

``<stem>`` is ``<random hex>_<file_name>`` so every upload gets its own refs,
even when two clients send the same file name. Blobs are write-once.

DATA_FOLDER may be an absolute or relative path. If relative, it's resolved
under app.instance_path. Blobs are private; clients reach them only through
signed URLs issued by the URL broker.
"""
from __future__ import annotations

import os
import posixpath
import uuid
from typing import BinaryIO

import structlog
from flask import current_app
from werkzeug.utils import secure_filename

from dugout.errors import NotFound, UpstreamUnavailable

logger = structlog.get_logger(__name__)


def data_root() -> str:
    base = current_app.config.get("DATA_FOLDER") or "data"
    if os.path.isabs(base):
        return base
    return os.path.join(current_app.instance_path, base)


def safe_file_name(file_name: str | None) -> str:
    """Filesystem-safe version of a client-supplied file name."""
    name = secure_filename(file_name or "")
    if not name:
        raise ValueError("A valid file name is required")
    return name


def blob_stem(file_name: str | None) -> str:
    """Per-upload blob name: a random prefix plus the sanitized file name."""
    return f"{uuid.uuid4().hex}_{safe_file_name(file_name)}"


def video_path(folder_id: str, file_name: str) -> str:
    return posixpath.join(folder_id, safe_file_name(file_name))


def thumbnail_path(folder_id: str, file_name: str, high_quality: bool = False) -> str:
    suffix = "_thumbnail_hq.jpg" if high_quality else "_thumbnail.jpg"
    return posixpath.join(folder_id, "thumbnails", safe_file_name(file_name) + suffix)


def folder_id_for_ref(ref: str) -> str:
    """Folder id a blob ref lives under (first path segment)."""
    return ref.split("/", 1)[0]


class LocalBlobStorage:
    """Blob store on the local filesystem (or a mounted volume).

    Args:
        root: Directory all refs resolve under
    """

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def __repr__(self) -> str:
        return f"<LocalBlobStorage {self.root}>"

    def resolve(self, ref: str) -> str:
        """Absolute path for a ref; refuses anything escaping the root."""
        if not ref or ref.startswith("/") or "\\" in ref:
            raise NotFound(f"Invalid blob reference {ref!r}")
        full = os.path.abspath(os.path.join(self.root, *ref.split("/")))
        if os.path.commonpath([full, self.root]) != self.root or full == self.root:
            raise NotFound(f"Invalid blob reference {ref!r}")
        return full

    def put_object(self, path: str, data: bytes | BinaryIO) -> str:
        """
        Write a new blob and return its ref. Existing blobs are never replaced.

        Args:
            path: Ref to write (see module layout)
            data: Bytes or a readable binary stream

        Raises:
            FileExistsError: If a blob (or an in-flight write) already holds the ref
            UpstreamUnavailable: If the write fails
        """
        full = self.resolve(path)
        tmp = full + ".part"
        if os.path.exists(full):
            raise FileExistsError(f"Blob {path} already exists")
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
        except OSError as e:
            raise UpstreamUnavailable(f"Blob write failed for {path}") from e
        try:
            fh = open(tmp, "xb")
        except FileExistsError:
            raise FileExistsError(f"Blob {path} is already being written") from None
        except OSError as e:
            raise UpstreamUnavailable(f"Blob write failed for {path}") from e
        try:
            with fh:
                if isinstance(data, bytes | bytearray):
                    fh.write(data)
                else:
                    while chunk := data.read(1024 * 1024):
                        fh.write(chunk)
            os.replace(tmp, full)
        except OSError as e:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise UpstreamUnavailable(f"Blob write failed for {path}") from e
        logger.debug("blob_stored", ref=path, size=os.path.getsize(full))
        return path

    def exists(self, ref: str) -> bool:
        try:
            return os.path.isfile(self.resolve(ref))
        except NotFound:
            return False

    def size(self, ref: str) -> int:
        if not self.exists(ref):
            raise NotFound(f"Blob {ref} not found")
        return os.path.getsize(self.resolve(ref))

    def delete(self, ref: str) -> bool:
        """Remove a blob. Returns False if it was already gone.

        Raises:
            UpstreamUnavailable: If the filesystem refuses the removal
        """
        full = self.resolve(ref)
        try:
            os.remove(full)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise UpstreamUnavailable(f"Blob delete failed for {ref}") from e
        logger.debug("blob_deleted", ref=ref)
        return True


def init_storage(app) -> LocalBlobStorage:
    with app.app_context():
        root = data_root()
    os.makedirs(root, exist_ok=True)
    storage = LocalBlobStorage(root)
    app.extensions["dugout.storage"] = storage
    return storage


def get_storage() -> LocalBlobStorage:
    return current_app.extensions["dugout.storage"]

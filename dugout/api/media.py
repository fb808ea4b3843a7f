"""
API endpoints for signed media URLs and signed blob downloads.

Clients never read blobs directly: they ask for a short-lived signed URL
(per video, or in batches for list screens) and fetch the blob from the
signed download route, which needs no principal headers.
"""
import os

import structlog
from flask import abort, jsonify, request, send_file
from flask_login import login_required

from dugout import media
from dugout.api import api_bp
from dugout.api._helpers import json_body, principal_id
from dugout.errors import BatchTooLarge, DugoutError, NotFound
from dugout.folders import require_read_access
from dugout.security.signed_media import verify_signature
from dugout.storage import folder_id_for_ref, get_storage
from dugout.url_broker import UrlKind, get_broker

logger = structlog.get_logger(__name__)


@api_bp.route("/videos/<video_id>/urls", methods=["GET"])
@login_required
def video_urls(video_id):
    """Signed URLs for a video and its thumbnails."""
    video = media.get_video(video_id, requested_by=principal_id())
    broker = get_broker()
    payload = {"video": broker.get_url(video.blob_ref, UrlKind.VIDEO).to_dict()}
    if video.thumbnail_ref:
        payload["thumbnail"] = broker.get_url(video.thumbnail_ref, UrlKind.THUMBNAIL).to_dict()
    if video.thumbnail_hq_ref:
        payload["thumbnail_hq"] = broker.get_url(
            video.thumbnail_hq_ref, UrlKind.THUMBNAIL
        ).to_dict()
    return jsonify(payload)


@api_bp.route("/media/urls", methods=["POST"])
@login_required
def batch_urls():
    """
    Resolve many signed URLs at once.

    Request body:
        {"refs": [{"blob_ref": "<folder>/clip.mp4", "kind": "video"}, ...]}

    Each entry resolves independently; failed entries carry an error code.
    More than URL_BATCH_LIMIT entries is rejected with 413.
    """
    entries = json_body().get("refs")
    if not isinstance(entries, list):
        raise ValueError("refs must be a list")
    pairs = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("blob_ref"):
            raise ValueError("Each ref needs a blob_ref")
        try:
            kind = UrlKind(entry.get("kind", "video"))
        except ValueError as e:
            raise ValueError(f"Unknown URL kind {entry.get('kind')!r}") from e
        pairs.append((entry["blob_ref"], kind))

    broker = get_broker()
    if len(pairs) > broker.batch_limit:
        raise BatchTooLarge(len(pairs), broker.batch_limit)

    caller = principal_id()
    allowed = []
    denied = set()
    checked: dict[str, bool] = {}
    for pair in pairs:
        folder_id = folder_id_for_ref(pair[0])
        if folder_id not in checked:
            try:
                require_read_access(folder_id, caller)
                checked[folder_id] = True
            except NotFound:
                checked[folder_id] = False
        if checked[folder_id]:
            allowed.append(pair)
        else:
            denied.add(pair)

    resolved = broker.get_batch_urls(allowed)
    results = []
    for blob_ref, kind in dict.fromkeys(pairs):
        item = {"blob_ref": blob_ref, "kind": kind.value}
        outcome = resolved.get((blob_ref, kind))
        if (blob_ref, kind) in denied:
            item["error"] = NotFound.code
        elif isinstance(outcome, DugoutError):
            item["error"] = outcome.code
        else:
            item.update(outcome.to_dict())
        results.append(item)
    return jsonify({"urls": results})


@api_bp.route("/media/signed/<path:ref>", methods=["GET"])
def signed_media_get(ref):
    """Serve a blob to anyone holding a valid, unexpired signed URL."""
    if not verify_signature(ref, request.args.get("e"), request.args.get("sig")):
        abort(403)
    storage = get_storage()
    try:
        path = storage.resolve(ref)
    except NotFound:
        abort(404)
    if not os.path.isfile(path):
        abort(404)
    logger.debug("signed_media_served", blob_ref=ref)
    return send_file(path, conditional=True, max_age=0)

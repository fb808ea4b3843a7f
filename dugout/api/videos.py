"""
API endpoints for videos and their annotations.
"""
import json
import queue

from flask import Response, current_app, jsonify, request
from flask_login import login_required

from dugout import annotations, media
from dugout.api import api_bp
from dugout.api._helpers import json_body, principal_id, principal_name
from dugout.models import utcnow
from dugout.storage import safe_file_name


def _float_field(name: str):
    raw = request.form.get(name)
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number") from e


def _int_field(name: str):
    value = _float_field(name)
    return int(value) if value is not None else None


@api_bp.route("/folders/<folder_id>/videos", methods=["GET"])
@login_required
def list_videos(folder_id):
    videos = media.list_videos(folder_id, principal_id())
    return jsonify({"videos": [v.to_dict() for v in videos]})


@api_bp.route("/folders/<folder_id>/videos", methods=["POST"])
@login_required
def upload_video(folder_id):
    """
    Upload a video (multipart/form-data).

    Form fields:
        file: video binary (required)
        thumbnail: standard thumbnail JPEG
        thumbnail_hq: high-quality thumbnail JPEG (highlights only)
        thumbnail_timestamp, thumbnail_width, thumbnail_height
        video_type: game | practice | highlight
        duration: seconds
        context: JSON object (game_opponent, game_date, practice_date, notes)
    """
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValueError("A video file is required")
    file_name = safe_file_name(upload.filename)

    thumbnails = None
    thumb = request.files.get("thumbnail")
    if thumb is not None:
        hq = request.files.get("thumbnail_hq")
        thumbnails = media.ThumbnailUpload(
            standard=thumb.read(),
            high_quality=hq.read() if hq is not None else None,
            timestamp=_float_field("thumbnail_timestamp"),
            width=_int_field("thumbnail_width"),
            height=_int_field("thumbnail_height"),
        )

    context = None
    if request.form.get("context"):
        try:
            context = json.loads(request.form["context"])
        except json.JSONDecodeError as e:
            raise ValueError("context must be a JSON object") from e

    video = media.upload_video(
        folder_id,
        principal_id(),
        principal_name(),
        file_name,
        upload.stream,
        thumbnails=thumbnails,
        duration=_float_field("duration"),
        video_type=request.form.get("video_type") or "game",
        context=context,
    )
    return jsonify({"video": video.to_dict()}), 201


@api_bp.route("/videos/<video_id>", methods=["GET"])
@login_required
def get_video(video_id):
    video = media.get_video(video_id, requested_by=principal_id())
    return jsonify({"video": video.to_dict()})


@api_bp.route("/videos/<video_id>", methods=["DELETE"])
@login_required
def delete_video(video_id):
    media.delete_video(video_id, principal_id())
    return jsonify({"success": True})


@api_bp.route("/videos/<video_id>/annotations", methods=["GET"])
@login_required
def list_annotations(video_id):
    """Annotations sorted by position in the video."""
    items = annotations.list_annotations(video_id, requested_by=principal_id())
    return jsonify({"annotations": [a.to_dict() for a in items]})


@api_bp.route("/videos/<video_id>/annotations", methods=["POST"])
@login_required
def add_annotation(video_id):
    """
    Add an annotation.

    Request body:
        {"timestamp_seconds": 12.5, "text": "Watch the footwork here"}
    """
    data = json_body()
    annotation = annotations.add_annotation(
        video_id,
        principal_id(),
        principal_name(),
        data.get("timestamp_seconds"),
        data.get("text"),
    )
    return jsonify({"annotation": annotation.to_dict()}), 201


@api_bp.route("/annotations/<annotation_id>", methods=["DELETE"])
@login_required
def remove_annotation(annotation_id):
    annotations.remove_annotation(annotation_id, principal_id())
    return jsonify({"success": True})


@api_bp.route("/videos/<video_id>/annotations/stream", methods=["GET"])
@login_required
def annotation_stream(video_id):
    """
    Server-Sent Events stream of a video's annotations.

    The first event carries the current list; another follows after every
    add or remove, always the full list in timeline order. Comment lines are
    sent as keepalives while nothing changes. When the video is deleted a
    final empty list is sent, followed by a ``closed`` event.

    Event data:
        {"video_id": "...", "annotations": [{...}, ...]}
    """
    # Subscribe before streaming so a missing video or folder access is a JSON error
    subscription = annotations.subscribe(video_id, requested_by=principal_id())
    keepalive = current_app.config.get("ANNOTATION_STREAM_KEEPALIVE_SECONDS", 15)

    def generate():
        try:
            while True:
                try:
                    snapshot = subscription.get(timeout=keepalive)
                except queue.Empty:
                    yield f": keepalive {utcnow().isoformat()}\n\n"
                    continue
                if snapshot is None:
                    yield "event: closed\ndata: {}\n\n"
                    return
                data = json.dumps({"video_id": video_id, "annotations": list(snapshot)})
                yield f"data: {data}\n\n"
        finally:
            # Runs when the client disconnects and the server closes the generator
            subscription.close()

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

"""
API endpoints for synced tracking records.

One set of routes serves every entity type (athletes, seasons, games,
practices); records are always scoped to the calling principal.
"""
from flask import current_app, jsonify, request
from flask_login import login_required

from dugout.api import api_bp
from dugout.api._helpers import int_arg, json_body, parse_datetime, principal_id
from dugout.models import utcnow
from dugout.records import store_for

# URL segment -> entity type value
ENTITY_SEGMENTS = {
    "athletes": "athlete",
    "seasons": "season",
    "games": "game",
    "practices": "practice",
}


def _store(segment: str):
    return store_for(ENTITY_SEGMENTS.get(segment, segment))


@api_bp.route("/records/<segment>", methods=["GET"])
@login_required
def list_records(segment):
    """
    List active records in creation order.

    Query params:
        after: id of the last record of the previous page
        limit: page size
    """
    store = _store(segment)
    limit = int_arg(
        "limit",
        default=current_app.config.get("RECORDS_PER_PAGE", 100),
        maximum=500,
    )
    records = store.list(principal_id(), after=request.args.get("after"), limit=limit)
    return jsonify(
        {
            "records": [r.to_dict() for r in records],
            "next_after": records[-1].id if len(records) == limit else None,
        }
    )


@api_bp.route("/records/<segment>/changes", methods=["GET"])
@login_required
def record_changes(segment):
    """
    Records changed since ``since`` (ISO timestamp), tombstones included.

    ``server_time`` in the response is the ``since`` to send next time. The
    window overlaps the previous one, so a record may be returned again.
    """
    store = _store(segment)
    since = parse_datetime(request.args.get("since"))
    server_time = utcnow()
    records = store.changes_since(principal_id(), since)
    return jsonify(
        {
            "records": [r.to_dict() for r in records],
            "server_time": server_time.isoformat(),
        }
    )


@api_bp.route("/records/<segment>", methods=["POST"])
@login_required
def create_record(segment):
    """
    Create a record (idempotent on ``local_id``).

    Request body:
        {"local_id": "device-generated-id", "payload": {...}}
    """
    store = _store(segment)
    data = json_body()
    record = store.create(principal_id(), data.get("local_id"), data.get("payload"))
    return jsonify({"record": record.to_dict()}), 201


@api_bp.route("/records/<segment>/<record_id>", methods=["GET"])
@login_required
def get_record(segment, record_id):
    record = _store(segment).get(principal_id(), record_id)
    return jsonify({"record": record.to_dict()})


@api_bp.route("/records/<segment>/<record_id>", methods=["PATCH"])
@login_required
def update_record(segment, record_id):
    """
    Apply a patch if the stored version matches.

    Request body:
        {"expected_version": 3, "patch": {...}}

    Returns 409 with the current version when the record moved on.
    """
    data = json_body()
    if "expected_version" not in data:
        raise ValueError("expected_version is required")
    record = _store(segment).update(
        principal_id(), record_id, data.get("patch") or {}, data["expected_version"]
    )
    return jsonify({"record": record.to_dict()})


@api_bp.route("/records/<segment>/<record_id>", methods=["DELETE"])
@login_required
def delete_record(segment, record_id):
    record = _store(segment).soft_delete(principal_id(), record_id)
    return jsonify({"record": record.to_dict()})

"""
API endpoints for folders and reviewer permissions.
"""
from flask import jsonify
from flask_login import login_required

from dugout import folders as registry
from dugout.api import api_bp
from dugout.api._helpers import json_body, parse_permission, principal_id
from dugout.models import DEFAULT_PERMISSION


def _folder_payload(folder) -> dict:
    """Owners see the full permission map; reviewers only their own entry."""
    caller = principal_id()
    if folder.is_owned_by(caller):
        data = folder.to_dict()
        data["is_owner"] = True
        return data
    data = folder.to_dict(include_permissions=False)
    data["is_owner"] = False
    permission = folder.permissions.get(caller)
    data["my_permission"] = permission.to_dict() if permission else None
    return data


@api_bp.route("/folders", methods=["GET"])
@login_required
def list_folders():
    """
    List folders the caller owns and folders shared with them.

    Returns:
        JSON object with ``owned`` and ``shared`` arrays
    """
    caller = principal_id()
    return jsonify(
        {
            "owned": [_folder_payload(f) for f in registry.list_folders_for_owner(caller)],
            "shared": [_folder_payload(f) for f in registry.list_folders_for_reviewer(caller)],
        }
    )


@api_bp.route("/folders", methods=["POST"])
@login_required
def create_folder():
    """
    Create a folder.

    Request body:
        {"name": "Spring Season 2024"}
    """
    data = json_body()
    folder = registry.create_folder(principal_id(), data.get("name"))
    return jsonify({"folder": _folder_payload(folder)}), 201


@api_bp.route("/folders/<folder_id>", methods=["GET"])
@login_required
def get_folder(folder_id):
    folder = registry.require_read_access(folder_id, principal_id())
    return jsonify({"folder": _folder_payload(folder)})


@api_bp.route("/folders/<folder_id>", methods=["PATCH"])
@login_required
def rename_folder(folder_id):
    data = json_body()
    folder = registry.rename_folder(folder_id, data.get("name"), principal_id())
    return jsonify({"folder": _folder_payload(folder)})


@api_bp.route("/folders/<folder_id>", methods=["DELETE"])
@login_required
def delete_folder(folder_id):
    """Delete a folder with all its videos, annotations and invitations."""
    registry.delete_folder(folder_id, principal_id())
    return jsonify({"success": True})


@api_bp.route("/folders/<folder_id>/permission", methods=["GET"])
@login_required
def my_permission(folder_id):
    """The caller's effective permission on a folder."""
    registry.require_read_access(folder_id, principal_id())
    permission = registry.get_effective_permission(folder_id, principal_id())
    return jsonify({"permission": permission.to_dict() if permission else None})


@api_bp.route("/folders/<folder_id>/reviewers/<reviewer_id>", methods=["PUT"])
@login_required
def grant_access(folder_id, reviewer_id):
    """
    Grant (or replace) a reviewer's permission.

    Request body:
        {"can_upload": true, "can_comment": true, "can_delete": false}
    """
    permission = parse_permission(json_body(), base=DEFAULT_PERMISSION)
    registry.grant_access(folder_id, reviewer_id, permission, requested_by=principal_id())
    folder = registry.get_folder(folder_id)
    return jsonify({"folder": _folder_payload(folder)})


@api_bp.route("/folders/<folder_id>/reviewers/<reviewer_id>", methods=["DELETE"])
@login_required
def revoke_access(folder_id, reviewer_id):
    registry.revoke_access(folder_id, reviewer_id, requested_by=principal_id())
    return jsonify({"success": True})

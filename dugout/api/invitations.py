"""
API endpoints for folder invitations.
"""
from flask import jsonify
from flask_login import current_user, login_required

from dugout import invitations as workflow
from dugout.api import api_bp
from dugout.api._helpers import json_body, parse_permission, principal_id
from dugout.models import DEFAULT_PERMISSION


@api_bp.route("/folders/<folder_id>/invitations", methods=["POST"])
@login_required
def create_invitation(folder_id):
    """
    Invite a reviewer by email.

    Request body:
        {
            "email": "coach@example.com",
            "permission": {"can_upload": false, "can_comment": true, "can_delete": false}
        }
    """
    data = json_body()
    invitation = workflow.create_invitation(
        principal_id(),
        folder_id,
        data.get("email"),
        permission=parse_permission(data.get("permission"), base=DEFAULT_PERMISSION),
    )
    return jsonify({"invitation": invitation.to_dict()}), 201


@api_bp.route("/folders/<folder_id>/invitations", methods=["GET"])
@login_required
def list_folder_invitations(folder_id):
    invitations = workflow.list_folder_invitations(folder_id, principal_id())
    return jsonify({"invitations": [i.to_dict() for i in invitations]})


@api_bp.route("/invitations", methods=["GET"])
@login_required
def list_my_invitations():
    """Pending, unexpired invitations addressed to the caller's email."""
    invitations = workflow.list_pending_invitations(current_user.email or "")
    return jsonify({"invitations": [i.to_dict() for i in invitations]})


@api_bp.route("/invitations/<invitation_id>/accept", methods=["POST"])
@login_required
def accept_invitation(invitation_id):
    """
    Accept an invitation addressed to the caller's email.

    The reviewer receives the permission the owner proposed.
    """
    invitation = workflow.accept_invitation(
        invitation_id,
        principal_id(),
        reviewer_contact=current_user.email or "",
    )
    return jsonify({"invitation": invitation.to_dict()})


@api_bp.route("/invitations/<invitation_id>/decline", methods=["POST"])
@login_required
def decline_invitation(invitation_id):
    invitation = workflow.decline_invitation(
        invitation_id, reviewer_contact=current_user.email or ""
    )
    return jsonify({"invitation": invitation.to_dict()})

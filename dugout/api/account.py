"""
API endpoints for the caller's own account.
"""
from flask import jsonify
from flask_login import current_user, login_required

from dugout import cascade
from dugout.api import api_bp
from dugout.api._helpers import principal_id
from dugout.profiles import get_profile


@api_bp.route("/account", methods=["GET"])
@login_required
def get_account():
    profile = get_profile(principal_id())
    payload = profile.to_dict() if profile else {
        "id": current_user.id,
        "email": current_user.email,
        "display_name": current_user.display_name,
    }
    return jsonify({"account": payload})


@api_bp.route("/account", methods=["DELETE"])
@login_required
def delete_account():
    """
    Delete the caller's account and everything it owns.

    Videos the caller uploaded into other owners' folders stay behind,
    marked orphaned.
    """
    result = cascade.delete_account(principal_id())
    return jsonify(
        {
            "success": True,
            "deleted": {
                "folders": len(result.folder_ids),
                "videos": len(result.video_ids),
                "annotations": result.annotation_count,
            },
        }
    )

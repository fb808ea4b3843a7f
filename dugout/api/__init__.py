"""
JSON API blueprint.

All endpoints are registered on the shared ``api_bp`` blueprint by the
route modules imported in :func:`dugout.register_blueprints`.
"""
from flask import Blueprint

api_bp = Blueprint("api", __name__)

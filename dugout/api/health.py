"""Health check endpoints."""
from flask import jsonify
from sqlalchemy import text

from dugout.api import api_bp
from dugout.models import db


@api_bp.route("/health", methods=["GET"])
def health():
    """Liveness probe."""
    return jsonify({"status": "ok"})


@api_bp.route("/health/db", methods=["GET"])
def health_db():
    """Readiness probe: the database answers a trivial query."""
    try:
        db.session.execute(text("SELECT 1"))
    except Exception as e:
        db.session.rollback()
        return jsonify({"status": "error", "error": type(e).__name__}), 503
    return jsonify({"status": "ok"})

"""
Principal loading.

Callers authenticate with an upstream gateway, which forwards the verified
identity in request headers:

- ``X-Principal-ID`` (required)
- ``X-Principal-Email``
- ``X-Principal-Name``
- ``X-Principal-Role`` ("athlete" or "coach")
- ``X-Gateway-Key`` (must match AUTH_GATEWAY_KEY)

Flask-Login's request loader turns these into a :class:`Principal` and
keeps the profile directory up to date. No credentials are issued or
checked here beyond the shared gateway key. Without a configured key every
principal is rejected unless AUTH_ALLOW_UNSIGNED_HEADERS is set (tests and
local development).
"""
import hmac
from dataclasses import dataclass

import structlog
from flask import g, jsonify
from flask_login import LoginManager, UserMixin

from dugout.models import UserRole
from dugout.profiles import upsert_profile

logger = structlog.get_logger(__name__)

login_manager = LoginManager()

PRINCIPAL_HEADER = "X-Principal-ID"
EMAIL_HEADER = "X-Principal-Email"
NAME_HEADER = "X-Principal-Name"
ROLE_HEADER = "X-Principal-Role"
GATEWAY_KEY_HEADER = "X-Gateway-Key"


@dataclass
class Principal(UserMixin):
    """An authenticated caller as vouched for by the gateway."""

    id: str
    email: str | None = None
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id


def _gateway_key_ok(app, request) -> bool:
    expected = app.config.get("AUTH_GATEWAY_KEY") or ""
    if not expected:
        # No key configured: reject unless unsigned headers were explicitly allowed
        return bool(app.config.get("AUTH_ALLOW_UNSIGNED_HEADERS"))
    presented = request.headers.get(GATEWAY_KEY_HEADER) or ""
    return hmac.compare_digest(presented, expected)


def init_auth(app) -> None:
    login_manager.init_app(app)
    unsigned_ok = app.config.get("AUTH_ALLOW_UNSIGNED_HEADERS")
    if not app.config.get("AUTH_GATEWAY_KEY") and not unsigned_ok:
        logger.warning("gateway_key_unset", detail="all principal headers will be rejected")

    @login_manager.request_loader
    def load_principal(request):
        """Build the principal from gateway headers for Flask-Login."""
        principal_id = (request.headers.get(PRINCIPAL_HEADER) or "").strip()
        if not principal_id:
            return None
        if not _gateway_key_ok(app, request):
            logger.warning("gateway_key_rejected", principal_id=principal_id)
            return None

        email = request.headers.get(EMAIL_HEADER)
        name = request.headers.get(NAME_HEADER)
        role = (request.headers.get(ROLE_HEADER) or "").strip().lower() or None
        if role not in {r.value for r in UserRole}:
            role = None
        profile = upsert_profile(principal_id, email=email, display_name=name, role=role)

        principal = Principal(
            id=principal_id,
            email=profile.email,
            name=profile.display_name,
        )
        g.principal = principal
        return principal

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required", "code": "unauthorized"}), 401

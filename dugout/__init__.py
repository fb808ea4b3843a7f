"""
Flask application factory.

This module builds the Flask application: configuration, structured logging,
extensions (database, migrations, principal loading, blob storage, URL
cache and broker, annotation feed), the JSON API blueprint and the JSON
error handlers.
"""
import os
import uuid

import structlog
from flask import Flask, g, jsonify, request
from flask_migrate import Migrate

from config.settings import DevelopmentConfig, ProductionConfig, TestingConfig
from dugout.error_utils import handle_api_exception
from dugout.errors import DugoutError

logger = structlog.get_logger(__name__)

# Module-level guard to avoid logging the database target once per app instance
_DB_URI_LOGGED = False


def create_app(config_class=None):
    """
    Create and configure the Flask application.

    Args:
        config_class: Configuration class to use. If None, will be determined
                     from the FLASK_ENV environment variable.

    Returns:
        Flask: Configured Flask application instance
    """
    preferred_instance = os.environ.get("DUGOUT_INSTANCE_PATH")
    if preferred_instance:
        os.makedirs(preferred_instance, exist_ok=True)
        app = Flask(__name__, instance_path=preferred_instance)
    else:
        app = Flask(__name__)

    if config_class is None:
        env = os.environ.get("FLASK_ENV", "development")
        if env == "production":
            config_class = ProductionConfig
        elif env == "testing":
            config_class = TestingConfig
        else:
            config_class = DevelopmentConfig

    app.config.from_object(config_class)

    # Under pytest, force hermetic overrides BEFORE initializing extensions
    if os.environ.get("PYTEST_CURRENT_TEST"):
        app.config.update(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
                "SQLALCHEMY_TRACK_MODIFICATIONS": False,
                # Pool options are invalid with SQLite's StaticPool
                "SQLALCHEMY_ENGINE_OPTIONS": {},
                "NOTIFICATION_DELIVERY": "inline",
                "EMAIL_ENABLED": False,
            }
        )

    from dugout.structured_logging import configure_structlog

    configure_structlog(app, role="web")

    # SQLite is reserved for tests
    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if not app.config.get("TESTING") and str(db_uri).startswith("sqlite:"):
        raise RuntimeError(
            "SQLite is only supported in TESTING. Set DATABASE_URL/DEV_DATABASE_URL to PostgreSQL."
        )
    _log_database_target(app)

    init_extensions(app)
    register_blueprints(app)
    register_error_handlers(app)
    return app


def _log_database_target(app) -> None:
    """Log the resolved DB target without credentials."""
    global _DB_URI_LOGGED
    if _DB_URI_LOGGED:
        return
    from sqlalchemy.engine.url import make_url

    try:
        url = make_url(app.config.get("SQLALCHEMY_DATABASE_URI") or "")
    except Exception:
        logger.warning("database_url_unparseable")
        return
    logger.debug(
        "database_target",
        driver=url.drivername,
        host=url.host or "<no-host>",
        port=url.port,
        database=url.database,
    )
    _DB_URI_LOGGED = True


def init_extensions(app):
    """
    Initialize Flask extensions and application-scoped services.

    Args:
        app: Flask application instance
    """
    from dugout.auth import init_auth
    from dugout.cache import init_url_cache
    from dugout.feeds import AnnotationFeed
    from dugout.models import db
    from dugout.storage import init_storage
    from dugout.url_broker import init_url_broker

    db.init_app(app)
    Migrate(app, db)

    init_auth(app)
    init_storage(app)
    url_cache = init_url_cache(app)
    init_url_broker(app, url_cache)
    app.extensions["dugout.feed"] = AnnotationFeed()

    @app.before_request
    def _bind_request_id():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    @app.after_request
    def _echo_request_id(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers["X-Request-ID"] = request_id
        return response

    # Roll back whatever a failed request left behind; Flask-SQLAlchemy
    # removes the session itself at app context teardown.
    @app.teardown_request
    def _teardown_request(exc):
        if exc is not None:
            db.session.rollback()


def register_blueprints(flask_app):
    """
    Register Flask blueprints.

    Args:
        flask_app: Flask application instance
    """
    # All API endpoints live on the shared api_bp blueprint; importing the
    # modules registers their routes, then the blueprint is registered once.
    from dugout.api import api_bp
    from dugout.api import account  # noqa: F401
    from dugout.api import folders  # noqa: F401
    from dugout.api import health  # noqa: F401
    from dugout.api import invitations  # noqa: F401
    from dugout.api import media  # noqa: F401
    from dugout.api import records  # noqa: F401
    from dugout.api import videos  # noqa: F401

    flask_app.register_blueprint(api_bp, url_prefix="/api")


def register_error_handlers(app):
    """
    Register JSON error handlers.

    Domain errors carry their own status code; ValueError from input
    validation becomes 400.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(DugoutError)
    def domain_error(error):
        if error.status_code >= 500:
            logger.warning("upstream_error", error_code=error.code, error=str(error))
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(ValueError)
    def invalid_input(error):
        return jsonify({"error": str(error), "code": "invalid_request"}), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found", "code": "not_found"}), 404

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({"error": "Forbidden", "code": "forbidden"}), 403

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method not allowed", "code": "method_not_allowed"}), 405

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "Upload too large", "code": "payload_too_large"}), 413

    @app.errorhandler(500)
    def internal_error(error):
        payload, status = handle_api_exception(
            logger,
            "internal_error",
            path=request.path,
            method=request.method,
        )
        payload["code"] = "internal_error"
        return jsonify(payload), status

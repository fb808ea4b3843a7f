"""
Structured logging for the web app and the Celery workers.

Both roles log through structlog into the stdlib logging tree. The root
logger gets three handlers:

- ``app.json`` (web) or ``worker.json`` (worker): every event at the
  configured level, one JSON object per line (python-json-logger)
- ``error.json``: warnings and errors from both roles
- a console handler for humans

Web events are enriched with the request id, route and calling principal;
worker events with the Celery task id. Signing keys, URL signatures and
gateway secrets are redacted before anything is rendered.

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("access_revoked", folder_id=folder.id, reviewer_id=reviewer_id)
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import structlog
from pythonjsonlogger.json import JsonFormatter

_STRUCTLOG_CONFIGURED = False

LOG_FILE_MAX_BYTES = 50 * 1024 * 1024
LOG_FILE_BACKUPS = 10
REDACTED = "***REDACTED***"

# Exact key names, or substrings of longer keys when 4+ characters
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "secret",
        "token",
        "authorization",
        "cookie",
        "signing_key",
        "gateway_key",
        "sig",
    }
)

# Third-party loggers and the level they get relative to ours
_QUIET_LOGGERS = {
    "werkzeug": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "redis": logging.WARNING,
    "kombu": logging.WARNING,
}


def get_log_dir(instance_path: str, override: str | None = None) -> str:
    """Directory for log files: ``override``, then ``$LOG_DIR``, then ``<instance>/logs``.

    The directory is created if needed.
    """
    log_dir = override or os.environ.get("LOG_DIR") or os.path.join(instance_path, "logs")
    os.makedirs(log_dir, exist_ok=True)
    return log_dir


def get_log_level(app_config: dict | None = None) -> int:
    """Numeric level from ``LOG_LEVEL`` in the app config or environment (INFO if unknown)."""
    name = (app_config or {}).get("LOG_LEVEL") or os.environ.get("LOG_LEVEL") or "INFO"
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    if lowered in SENSITIVE_KEYS:
        return True
    return any(word in lowered for word in SENSITIVE_KEYS if len(word) > 3)


def _censor_sensitive_data(logger, method_name, event_dict):
    for key in [k for k in event_dict if _is_sensitive(k)]:
        event_dict[key] = REDACTED
    return event_dict


def _filter_health_checks(logger, method_name, event_dict):
    """Drop routine events from health probes; errors still get through."""
    if event_dict.get("level") not in ("info", "warning"):
        return event_dict
    if (event_dict.get("path") or "").startswith("/api/health"):
        raise structlog.DropEvent
    return event_dict


def _add_request_context(logger, method_name, event_dict):
    from flask import g, has_request_context, request

    if not has_request_context():
        return event_dict
    event_dict.setdefault("request_id", g.get("request_id"))
    event_dict["method"] = request.method
    event_dict["path"] = request.path
    event_dict["endpoint"] = request.endpoint
    principal = g.get("principal")
    if principal is not None:
        event_dict.setdefault("principal_id", principal.id)
    return event_dict


def _add_celery_context(logger, method_name, event_dict):
    from celery import current_task

    task_request = getattr(current_task, "request", None)
    if task_request is not None and task_request.id:
        event_dict["task_id"] = task_request.id
        event_dict["task_name"] = task_request.task
        event_dict["task_retries"] = task_request.retries or 0
    return event_dict


def _json_file_handler(path: str, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
    )
    handler.setLevel(level)
    handler.setFormatter(
        JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    return handler


def _console_handler(level: int, verbose: bool) -> logging.StreamHandler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if verbose:
        formatter = logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s", "%H:%M:%S")
    else:
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    handler.setFormatter(formatter)
    return handler


def _install(handlers: list[logging.Handler], level: int, enrichers: list) -> None:
    """Replace the root handlers and point structlog at the stdlib tree."""
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    for handler in handlers:
        root.addHandler(handler)
    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else quiet_level)

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_logger_name,
            *enrichers,
            _censor_sensitive_data,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_structlog(app, role: str = "web") -> dict:
    """
    Configure logging for the Flask app.

    Under ``TESTING`` only a plain console renderer is set up and no files are
    written. Configuration happens once per process.

    Args:
        app: Flask application
        role: "web" or "worker"; selects which JSON file receives events

    Returns:
        dict: Paths of ``log_dir``, ``app_log``, ``worker_log`` and
        ``error_log`` (empty strings under testing)
    """
    global _STRUCTLOG_CONFIGURED

    if app.config.get("TESTING"):
        if not _STRUCTLOG_CONFIGURED:
            structlog.configure(
                processors=[
                    structlog.processors.add_log_level,
                    _censor_sensitive_data,
                    structlog.dev.ConsoleRenderer(colors=False),
                ],
                wrapper_class=structlog.make_filtering_bound_logger(get_log_level(app.config)),
                logger_factory=structlog.PrintLoggerFactory(),
                cache_logger_on_first_use=True,
            )
            _STRUCTLOG_CONFIGURED = True
        return {"log_dir": "", "app_log": "", "worker_log": "", "error_log": ""}

    log_dir = get_log_dir(app.instance_path)
    paths = {
        "log_dir": log_dir,
        "app_log": os.path.join(log_dir, "app.json"),
        "worker_log": os.path.join(log_dir, "worker.json"),
        "error_log": os.path.join(log_dir, "error.json"),
    }
    level = get_log_level(app.config)

    if not _STRUCTLOG_CONFIGURED:
        events_path = paths["worker_log"] if role == "worker" else paths["app_log"]
        _install(
            [
                _json_file_handler(events_path, level),
                _json_file_handler(paths["error_log"], logging.WARNING),
                _console_handler(level, verbose=app.debug),
            ],
            level,
            enrichers=[_add_request_context, _filter_health_checks, _add_celery_context],
        )
        _STRUCTLOG_CONFIGURED = True
        structlog.get_logger(__name__).debug(
            "logging_configured", role=role, log_dir=log_dir, level=logging.getLevelName(level)
        )
    return paths


def configure_structlog_celery(instance_path: str) -> None:
    """Configure logging inside a Celery worker (from the logger setup signals)."""
    global _STRUCTLOG_CONFIGURED

    if _STRUCTLOG_CONFIGURED:
        return
    log_dir = get_log_dir(instance_path)
    level = get_log_level()
    _install(
        [
            _json_file_handler(os.path.join(log_dir, "worker.json"), level),
            _json_file_handler(os.path.join(log_dir, "error.json"), logging.WARNING),
            _console_handler(level, verbose=False),
        ],
        level,
        enrichers=[_add_celery_context],
    )
    _STRUCTLOG_CONFIGURED = True
    structlog.get_logger(__name__).debug("celery_logging_configured", log_dir=log_dir)

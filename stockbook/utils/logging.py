from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask, g, has_request_context

LOG_FORMAT = "%(asctime)s %(levelname)s req=%(request_id)s owner=%(owner_id)s %(name)s: %(message)s"

# server loggers stay at INFO even when the app runs in debug mode
_SERVER_LOGGERS = ("werkzeug", "gunicorn.error", "gunicorn.access")


class RequestContextFilter(logging.Filter):
    """Stamp records with the request id and the signed-in owner, or ``-``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = "-"
        record.owner_id = "-"
        if has_request_context():
            record.request_id = g.get("request_id") or "-"
            # only a user Flask-Login already loaded; never trigger a lookup here
            user = g.get("_login_user")
            if user is not None and getattr(user, "is_authenticated", False):
                record.owner_id = user.get_id()
        return True


def _log_path(app: Flask) -> Path:
    configured = app.config.get("LOG_DIR")
    directory = Path(configured) if configured else Path(app.root_path).parent / "logs"
    directory.mkdir(parents=True, exist_ok=True)
    return directory / "stockbook.log"


def _install(logger: logging.Logger, handler: logging.Handler, context: logging.Filter) -> None:
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(context)
    logger.addHandler(handler)


def configure_logging(app: Flask) -> Path:
    """Send every record to stdout and a rotating ``stockbook.log``.

    Calling this again for another app (the test suite builds many) does not
    duplicate handlers; a new file handler is only added for a new log path.
    """

    log_path = _log_path(app)
    level = app.config.get("LOG_LEVEL") or ("DEBUG" if app.debug else "INFO")
    context = RequestContextFilter()

    root = logging.getLogger()
    root.setLevel(level)

    if not any(type(handler) is logging.StreamHandler for handler in root.handlers):
        _install(root, logging.StreamHandler(sys.stdout), context)

    known_files = {
        handler.baseFilename
        for handler in root.handlers
        if isinstance(handler, RotatingFileHandler)
    }
    if os.path.abspath(log_path) not in known_files:
        _install(
            root,
            RotatingFileHandler(
                log_path,
                maxBytes=int(app.config.get("LOG_MAX_BYTES", 5 * 1024 * 1024)),
                backupCount=int(app.config.get("LOG_BACKUP_COUNT", 5)),
            ),
            context,
        )

    for handler in app.logger.handlers:
        if not any(isinstance(existing, RequestContextFilter) for existing in handler.filters):
            handler.addFilter(context)

    app.logger.setLevel(level)
    logging.getLogger("stockbook").setLevel(level)
    for name in _SERVER_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)

    return log_path

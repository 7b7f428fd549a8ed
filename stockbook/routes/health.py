from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import OperationalError

bp = Blueprint("health", __name__, url_prefix="/health")


@bp.get("")
def health():
    """Liveness probe; the process answers even when the database is down."""

    from stockbook import _ping_database

    try:
        _ping_database()
        database_available = True
    except OperationalError as exc:
        current_app.logger.warning("Health check could not reach the database: %s", exc)
        database_available = False

    return jsonify(
        {
            "status": "ok" if database_available else "degraded",
            "database": database_available,
            "database_error": None
            if database_available
            else current_app.config.get("DATABASE_ERROR"),
        }
    )

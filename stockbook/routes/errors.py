from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from stockbook.errors import StockbookError
from stockbook.extensions import db

bp = Blueprint("errors", __name__)


@bp.app_errorhandler(StockbookError)
def handle_stockbook_error(error: StockbookError):
    db.session.rollback()
    log = current_app.logger.warning if error.status_code >= 409 else current_app.logger.info
    log(
        "%s %s rejected with %s: %s",
        request.method,
        request.path,
        error.kind,
        error.message,
    )
    return jsonify(error.to_result()), error.status_code


@bp.app_errorhandler(Exception)
def handle_exception(error: Exception):
    # Non-500 HTTP errors keep their status and get a JSON body.
    if isinstance(error, HTTPException) and error.code != 500:
        return (
            jsonify({"error": error.name.lower().replace(" ", "_"), "message": error.description}),
            error.code,
        )

    db.session.rollback()
    current_app.logger.exception("Unhandled exception", exc_info=error)
    return (
        jsonify({"error": "internal_error", "message": "Internal Server Error"}),
        500,
    )

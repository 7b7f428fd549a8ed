from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from stockbook.errors import UnauthorizedError, ValidationError
from stockbook.extensions import db
from stockbook.models import User
from stockbook.utils.parsing import parse_text

bp = Blueprint("auth", __name__, url_prefix="/auth")


def _credentials() -> tuple[str, str]:
    data = request.get_json(silent=True) or request.form
    username, username_error = parse_text(data.get("username"), label="Username", required=True)
    password, password_error = parse_text(data.get("password"), label="Password", required=True)
    errors = [error for error in (username_error, password_error) if error]
    if errors:
        raise ValidationError(errors)
    return username, password


@bp.post("/register")
def register():
    username, password = _credentials()
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if User.query.filter_by(username=username).first() is not None:
        raise ValidationError("Username already exists")

    user = User(username=username)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    login_user(user)
    current_app.logger.info("Registered user %s", username)
    return jsonify({"id": user.id, "username": user.username}), 201


@bp.post("/login")
def login():
    username, password = _credentials()
    user = User.query.filter_by(username=username).first()
    if user is None or not user.check_password(password):
        current_app.logger.warning("Failed login for %s", username)
        raise UnauthorizedError("Invalid credentials")
    login_user(user)
    current_app.logger.info("User %s logged in", username)
    return jsonify({"id": user.id, "username": user.username})


@bp.post("/logout")
@login_required
def logout():
    username = current_user.username
    logout_user()
    current_app.logger.info("User %s logged out", username)
    return jsonify({"success": True})

import uuid

from flask import Flask, g, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from config import Config

from . import models  # registers the tables on db.Model.metadata
from .extensions import db, login_manager
from .routes import auth, business, errors, health, invoices, reports, stock
from .utils.logging import configure_logging

BLUEPRINTS = (
    errors.bp,
    auth.bp,
    business.bp,
    stock.bp,
    invoices.bp,
    reports.bp,
    health.bp,
)

OWNER_BOOTSTRAP_ATTEMPTS = 3


def _ping_database() -> None:
    """Raise :class:`OperationalError` when the configured database is unreachable."""

    with db.engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def _ensure_owner_account(username, password) -> None:
    """Create the bootstrap owner account once.

    Several workers may start at the same time; a unique violation means
    another worker won and the lookup is retried.
    """

    if not (username and password):
        return

    for attempt in range(1, OWNER_BOOTSTRAP_ATTEMPTS + 1):
        if models.User.query.filter_by(username=username).first() is not None:
            return
        owner = models.User(username=username)
        owner.set_password(password)
        db.session.add(owner)
        try:
            db.session.commit()
            return
        except IntegrityError:
            db.session.rollback()
            if attempt == OWNER_BOOTSTRAP_ATTEMPTS:
                raise


def _use_static_pool_for_memory_sqlite(app: Flask) -> None:
    # every session must see the same in-memory database
    if not app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite:///:memory:"):
        return
    options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
    options.setdefault("poolclass", StaticPool)
    options.setdefault("connect_args", {}).setdefault("check_same_thread", False)


def _init_login(app: Flask) -> None:
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        try:
            return db.session.get(models.User, int(user_id))
        except (TypeError, ValueError):
            return None
        except OperationalError:
            app.logger.warning("User %s not loaded: database unavailable", user_id)
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        body = {"error": "unauthorized", "message": "Authentication required"}
        return jsonify(body), 401


def _unreachable_message(exc: OperationalError) -> str:
    message = (
        "Unable to connect to the configured database. Check that PostgreSQL "
        "is running and DB_URL is correct, then restart Stockbook."
    )
    details = str(getattr(exc, "orig", None) or exc).strip()
    return f"{message} (Error: {details})" if details else message


def _prepare_database(app: Flask):
    """Create tables and the owner account; return an error message or ``None``."""

    with app.app_context():
        try:
            _ping_database()
        except OperationalError as exc:
            app.logger.error(
                "Database unreachable at startup: %s", exc.orig, exc_info=app.debug
            )
            db.session.remove()
            db.engine.dispose()
            return _unreachable_message(exc)

        try:
            db.create_all()
            _ensure_owner_account(app.config.get("ADMIN_USER"), app.config.get("ADMIN_PASSWORD"))
        except SQLAlchemyError:
            app.logger.exception("Could not initialize the database schema")
            db.session.remove()
            return (
                "The database schema could not be initialized. Check the Stockbook "
                "log and restart once the database is fixed."
            )
    return None


def _track_request_ids(app: Flask) -> None:
    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def echo_request_id(response):
        if g.get("request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response


def create_app(config_override=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    app.config.update(config_override or {})
    _use_static_pool_for_memory_sqlite(app)

    configure_logging(app)
    db.init_app(app)
    _init_login(app)

    error_message = _prepare_database(app)
    app.config["DATABASE_AVAILABLE"] = error_message is None
    app.config["DATABASE_ERROR"] = error_message

    _track_request_ids(app)
    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)

    return app

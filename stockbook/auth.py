from functools import wraps

from flask_login import current_user

from stockbook.errors import UnauthorizedError


def require_owner() -> int:
    """Return the signed-in user's id, the owner scope for every service call."""

    if not getattr(current_user, "is_authenticated", False):
        raise UnauthorizedError("Authentication required")
    return int(current_user.id)


def owner_required(f):
    """Inject ``owner_id`` into the view, answering 401 for anonymous callers."""

    @wraps(f)
    def wrapped(*args, **kwargs):
        return f(require_owner(), *args, **kwargs)

    return wrapped

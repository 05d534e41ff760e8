"""Decorators for the API blueprint."""

from functools import wraps

from flask import g

from basket.errors import AppError
from basket.extensions import sessions


def session_required(f):
    """Load the device user's sync session into ``g.sync``.

    Responds 401 when no user is selected for this device.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.get("user_id"):
            raise AppError("No user is signed in on this device.", 401)
        g.sync = sessions.get(g.user_id)
        return f(*args, **kwargs)

    return decorated_function

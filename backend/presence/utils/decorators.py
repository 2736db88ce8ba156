# backend/presence/utils/decorators.py
"""Role checks on top of the bearer credential."""
from functools import wraps
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request
from flask_limiter.util import get_remote_address
from presence.utils.helpers import error_response

STAFF_ROLE = 'staff'
STUDENT_ROLE = 'student'


def role_required(role: str, message: str):
    """Decorator factory requiring a ``role`` claim in the access token."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if get_jwt().get('role') != role:
                return error_response(message, 403)

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def participant_key() -> str:
    """
    Rate limit key for per-participant limits.

    Flask-Limiter evaluates route limits before the view's ``jwt_required``
    runs, so the token is verified here. Falls back to the client address
    for anonymous requests.
    """
    verify_jwt_in_request(optional=True)
    return get_jwt_identity() or get_remote_address()


staff_required = role_required(STAFF_ROLE, "Only staff can manage attendance sessions")
student_required = role_required(STUDENT_ROLE, "Only students can mark attendance")

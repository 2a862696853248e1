from flask import request, jsonify
from flask_login import current_user
from functools import wraps
import logging

logger = logging.getLogger(__name__)

# Collaborator endpoints authenticate with a shared secret, not a session.
SECRET_AUTH_PREFIXES = (
    '/api/webhooks/',
    '/api/cron/',
)

LOGIN_WHITELIST = [
    '/favicon.ico',
]


def is_secret_auth_path(path: str) -> bool:
    return path.startswith(SECRET_AUTH_PREFIXES)


def setup_auth_middleware(app):

    @app.before_request
    def require_login():
        path = request.path

        if path in LOGIN_WHITELIST:
            return None
        if is_secret_auth_path(path):
            return None

        if not current_user.is_authenticated:
            return jsonify({'error': 'Not logged in',
                            'login_required': True}), 401
        if not current_user.is_active:
            return jsonify({'error': 'Account is disabled'}), 403

        return None


def role_required(*allowed_roles):
    """Restrict a view to users whose ``UserRole`` is in ``allowed_roles``."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Not logged in'}), 401

            if current_user.role not in allowed_roles:
                logger.warning(
                    "User %s attempted to access roles %s, current role: %s",
                    current_user.id,
                    [role.value for role in allowed_roles],
                    current_user.role.value,
                )
                return jsonify({'error': 'Insufficient permissions'}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator

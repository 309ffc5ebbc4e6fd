# awardvote/authentication/rbac.py

from enum import Enum
from functools import wraps

from flask import current_app, g, request

from awardvote.errors import Forbidden

# Role-based access on top of server-side sessions. The role is derived from
# the User row on every request, never from anything cached in the session,
# so revoking admin takes effect immediately.


class UserRole(Enum):
    VOTER = "voter"
    ADMINISTRATOR = "administrator"


class Permission(Enum):
    VOTE = "vote"
    VIEW_OWN_STATUS = "view_own_status"
    CONFIGURE_VOTING = "configure_voting"


# Role -> Permissions mapping
ROLE_PERMISSIONS = {
    UserRole.VOTER: [
        Permission.VOTE,
        Permission.VIEW_OWN_STATUS,
    ],
    UserRole.ADMINISTRATOR: [
        Permission.VOTE,
        Permission.VIEW_OWN_STATUS,
        Permission.CONFIGURE_VOTING,
    ],
}


def role_for(user):
    return UserRole.ADMINISTRATOR if user.is_admin else UserRole.VOTER


def has_permission(user, permission):
    return permission in ROLE_PERMISSIONS.get(role_for(user), [])


def client_address():
    return request.remote_addr or 'unknown'


def load_session(refresh=True):
    """Validate the session cookie and stash the session and a fresh user on `g`."""
    services = current_app.extensions['awardvote']
    session_id = request.cookies.get(current_app.config['SESSION_COOKIE_NAME'])
    session = services.sessions.validate_session(session_id, client_address(), refresh=refresh)
    g.auth_session = session
    g.user = services.sessions.resolve_user(session)
    return g.user


# Decorator for required permission; validates the session first
def require_permission(permission):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            user = load_session()
            if not has_permission(user, permission):
                raise Forbidden(f"Missing permission: {permission.value}")
            return func(*args, **kwargs)
        return wrapper
    return decorator


def require_anti_forgery_marker(func):
    """Reject requests without the custom header only our own client script sends."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        header = current_app.config['ANTI_FORGERY_HEADER']
        if request.headers.get(header, '').lower() != 'true':
            current_app.logger.warning("Vote attempt without %s header from %s", header, client_address())
            raise Forbidden('Invalid request origin')
        return func(*args, **kwargs)
    return wrapper


# Overview: Request decorators and JSON error helpers for API routes.

from functools import wraps

from flask import request, jsonify, g

from .extensions import db
from .errors import ServiceError
from .models import User

USER_HEADER = "X-User-Id"


def _is_authenticated() -> bool:
    return hasattr(g, "current_user")


def require_user(f):
    """
    Resolve the acting user and establish tenant context.

    Authentication itself happens upstream (gateway / SSO); the request
    reaches us with the authenticated user's id in the X-User-Id header.

    Sets on Flask g:
    - g.current_user: the active User row
    - g.org_id: the user's organization (tenant context)

    Returns 401 when the header is missing, malformed, or names an unknown
    or deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_user_id = request.headers.get(USER_HEADER)
        if not raw_user_id:
            return jsonify({"error": "Authentication required", "code": "UNAUTHENTICATED", "details": {}}), 401

        try:
            user_id = int(raw_user_id)
        except ValueError:
            return jsonify({"error": "Invalid user header", "code": "UNAUTHENTICATED", "details": {}}), 401

        user = db.session.get(User, user_id)
        if not user or not user.is_active:
            return jsonify({"error": "Unknown or inactive user", "code": "UNAUTHENTICATED", "details": {}}), 401

        g.current_user = user
        g.org_id = user.org_id
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require the acting user to hold one of `roles` (apply after @require_user)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "code": "UNAUTHENTICATED", "details": {}}), 401

            if g.current_user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "code": "FORBIDDEN_ROLE",
                    "details": {"required_roles": sorted(roles)},
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def error_response(exc: ServiceError):
    return jsonify(exc.to_dict()), exc.status_code


def internal_error():
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR", "details": {}}), 500

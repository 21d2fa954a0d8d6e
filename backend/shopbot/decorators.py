# Overview: Request decorators for admin API routes.

import hmac
from functools import wraps

from flask import current_app, g, jsonify, request

from .services import session_service


def _presented_inbox_key() -> str | None:
    return request.headers.get("X-Inbox-Key") or request.args.get("key")


def require_inbox_auth(f):
    """
    Require admin console credentials.

    Accepted, in order:
    - Authorization: Bearer <session token> (sets g.current_user)
    - X-Inbox-Key header or ?key= matching INBOX_ACCESS_KEY

    When INBOX_ACCESS_KEY is unset and no token is presented the API is
    open; a warning is logged on every such request.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.current_user = None

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]
            context = session_service.validate_session(token)
            if not context:
                return jsonify({"error": "Invalid or expired token"}), 401
            g.current_user = context.user
            return f(*args, **kwargs)

        expected = current_app.config.get("INBOX_ACCESS_KEY") or ""
        if not expected:
            current_app.logger.warning("INBOX_ACCESS_KEY is not set; %s %s is unprotected", request.method, request.path)
            return f(*args, **kwargs)

        presented = _presented_inbox_key() or ""
        if not presented or not hmac.compare_digest(presented, expected):
            return jsonify({"error": "Unauthorized"}), 401

        return f(*args, **kwargs)

    return decorated_function


def require_auth(f):
    """Require a Bearer session token (used by /api/auth/me and logout)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function

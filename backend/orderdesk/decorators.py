# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def require_auth(f):
    """
    Require a bearer token and establish the caller context.

    Sets g.caller to the CallerContext passed to services as actor=.

    Returns 401 if:
    - No Authorization header
    - Unknown token
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({
                "error": "Authentication required",
                "kind": "unauthorized",
                "details": {},
            }), 401

        token = auth_header.split(" ", 1)[1].strip()
        context = session_service.validate_token(token)

        if not context:
            return jsonify({
                "error": "Invalid token",
                "kind": "unauthorized",
                "details": {},
            }), 401

        g.caller = context

        return f(*args, **kwargs)

    return decorated_function

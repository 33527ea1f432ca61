# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


def require_actor(f):
    """
    Establish the acting user for the request.

    Identity and credentials are issued elsewhere; the gateway forwards them as:
    - X-Actor-Id: integer user id (required)
    - X-Actor-Role: role name used for transition capability checks (optional)

    Sets g.actor_id and g.actor_role. Returns 401 when the id is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_id = request.headers.get("X-Actor-Id", "").strip()
        if not raw_id.isdigit() or int(raw_id) <= 0:
            return jsonify({"error": "Actor identity required"}), 401

        g.actor_id = int(raw_id)
        g.actor_role = request.headers.get("X-Actor-Role") or None
        return f(*args, **kwargs)

    return decorated_function

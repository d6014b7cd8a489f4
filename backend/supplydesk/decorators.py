# Overview: Request decorators that establish the calling actor for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services.commands import Actor
from .validation import ValidationError


def require_actor(f):
    """
    Build the calling Actor from the identity collaborator's headers.

    SECURITY: these headers are trusted; they must be set by the upstream
    auth proxy and stripped from client traffic. Sets g.actor.

    - X-User-Id: int
    - X-User-Type: INDIVIDUAL | BUSINESS
    - X-User-Role: CUSTOMER | ADMIN | STAFF
    - X-User-Validated: "true" / "false"

    Returns 401 when the identity is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = request.headers.get("X-User-Id")
        if not user_id:
            return jsonify({"error": "Authentication required"}), 401

        try:
            g.actor = Actor.build(
                user_id=user_id,
                user_type=request.headers.get("X-User-Type"),
                role=request.headers.get("X-User-Role"),
                validated=request.headers.get("X-User-Validated", "false"),
            )
        except ValidationError as e:
            return jsonify({"error": f"Invalid identity: {e}"}), 401

        return f(*args, **kwargs)

    return decorated_function


def require_staff(f):
    """Require an ADMIN or STAFF actor. Use after @require_actor."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = getattr(g, "actor", None)
        if actor is None:
            return jsonify({"error": "Authentication required"}), 401
        if not actor.is_staff:
            return jsonify({"error": "Permission denied", "code": "PERMISSION_DENIED"}), 403
        return f(*args, **kwargs)

    return decorated_function

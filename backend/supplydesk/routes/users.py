# Overview: Flask API routes for versioned user account writes.

# backend/supplydesk/routes/users.py
"""
User admin routes. ADMIN or STAFF only; writes are versioned, deletes soft.
"""
from flask import Blueprint, current_app, g, request

from ..decorators import require_actor, require_staff
from ..services import user_service
from ..validation import EngineError, require_version
from . import error_response

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.patch("/<int:user_id>")
@require_actor
@require_staff
def update_user_route(user_id: int):
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    try:
        version = require_version(payload)
        user = user_service.update_user(
            user_id=user_id,
            expected_version=version,
            payload=payload,
            actor_user_id=g.actor.user_id,
        )
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update user")
        return {"error": "Failed to update user"}, 500

    return user.to_dict()


@users_bp.delete("/<int:user_id>")
@require_actor
@require_staff
def delete_user_route(user_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        expected = require_version(payload) if payload.get("version") is not None else None
        user = user_service.delete_user(
            user_id=user_id,
            actor_user_id=g.actor.user_id,
            expected_version=expected,
        )
    except EngineError as e:
        return error_response(e)
    return user.to_dict()


@users_bp.post("/<int:user_id>/restore")
@require_actor
@require_staff
def restore_user_route(user_id: int):
    try:
        user = user_service.restore_user(user_id=user_id, actor_user_id=g.actor.user_id)
    except EngineError as e:
        return error_response(e)
    return user.to_dict()

# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/supplydesk/routes/orders.py
"""
Order routes.

Routes stay thin: parse the payload into a typed command, call the order
service, serialize the result. Engine errors carry their own HTTP status.

SECURITY: every route requires @require_actor. Customers only ever see and
cancel their own orders; status changes need ADMIN or STAFF.
"""
from flask import Blueprint, current_app, g, request

from ..decorators import require_actor, require_staff
from ..services import order_service
from ..services.commands import CancelOrderCommand, CreateOrderCommand, TransitionStatusCommand
from ..validation import EngineError
from . import error_response

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_actor
def create_order_route():
    """
    Create an order or a quote request.

    Body: items[{product_id, quantity, discount_percent?}], shipping_method,
    shipping_address, order_type? (PURCHASE | QUOTE), billing_address?,
    shipping_city?, shipping_zone?, customer_notes?, estimated_date?
    """
    payload = request.get_json(silent=True)
    try:
        command = CreateOrderCommand.from_payload(payload)
        order = order_service.create_order(command, g.actor)
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return {"error": "Failed to create order"}, 500

    return order.to_dict(include_history="all"), 201


@orders_bp.get("")
@require_actor
def list_orders_route():
    """
    Query params: status, order_type, user_id (staff only), page (default 1),
    per_page (default 10, max 100).
    """
    try:
        result = order_service.list_orders(
            g.actor,
            status=request.args.get("status"),
            order_type=request.args.get("order_type"),
            user_id=request.args.get("user_id", type=int),
            page=request.args.get("page", default=1, type=int),
            per_page=request.args.get("per_page", default=10, type=int),
        )
    except EngineError as e:
        return error_response(e)
    return result


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.actor)
    except EngineError as e:
        return error_response(e)
    return order.to_dict()


@orders_bp.get("/<int:order_id>/history")
@require_actor
def get_order_history_route(order_id: int):
    try:
        history = order_service.get_status_history(order_id, g.actor)
    except EngineError as e:
        return error_response(e)
    return {"order_id": order_id, "history": [h.to_dict() for h in history]}


@orders_bp.get("/<int:order_id>/transitions")
@require_actor
@require_staff
def get_order_transitions_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.actor)
    except EngineError as e:
        return error_response(e)
    return {
        "order_id": order.id,
        "status": order.status,
        "version": order.version,
        "allowed": order_service.allowed_transitions(order),
    }


@orders_bp.post("/<int:order_id>/status")
@require_actor
@require_staff
def transition_status_route(order_id: int):
    """
    Body: status, reason? (required for CANCELLED, REJECTED, ON_HOLD),
    notes?, tracking_number?, tracking_url?, estimated_date?,
    assigned_to_user_id?, shipped_at?, delivered_at?, delivery_received_by?,
    expected_version?
    """
    payload = request.get_json(silent=True)
    try:
        command = TransitionStatusCommand.from_payload(order_id, payload)
        order = order_service.transition_status(command, g.actor)
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change order status")
        return {"error": "Failed to change order status"}, 500

    return order.to_dict()


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    """Body: reason, expected_version?"""
    payload = request.get_json(silent=True)
    try:
        command = CancelOrderCommand.from_payload(order_id, payload)
        order = order_service.cancel_order(command, g.actor)
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return {"error": "Failed to cancel order"}, 500

    return order.to_dict()

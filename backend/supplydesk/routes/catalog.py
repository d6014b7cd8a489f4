# Overview: Flask API routes for versioned product and category writes.

# backend/supplydesk/routes/catalog.py
"""
Catalog admin routes.

Every write carries the version the client last read; a stale version
returns 409 and the client must reload. Deletes are soft.

SECURITY: ADMIN or STAFF only.
"""
from flask import Blueprint, current_app, g, request

from ..decorators import require_actor, require_staff
from ..services import catalog_service
from ..validation import EngineError, ValidationError, coerce_int, require_version
from . import error_response

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


def _optional_version(payload: dict):
    if payload.get("version") is None:
        return None
    return require_version(payload)


@products_bp.patch("/<int:product_id>")
@require_actor
@require_staff
def update_product_route(product_id: int):
    """Body: version (required) plus any writable product field. stock is not writable here."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    try:
        version = require_version(payload)
        product = catalog_service.update_product(
            product_id=product_id,
            expected_version=version,
            payload=payload,
            actor_user_id=g.actor.user_id,
        )
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"error": "Failed to update product"}, 500

    return product.to_dict()


@products_bp.delete("/<int:product_id>")
@require_actor
@require_staff
def delete_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        product = catalog_service.delete_product(
            product_id=product_id,
            actor_user_id=g.actor.user_id,
            expected_version=_optional_version(payload),
        )
    except EngineError as e:
        return error_response(e)
    return product.to_dict()


@products_bp.post("/<int:product_id>/restore")
@require_actor
@require_staff
def restore_product_route(product_id: int):
    try:
        product = catalog_service.restore_product(product_id=product_id, actor_user_id=g.actor.user_id)
    except EngineError as e:
        return error_response(e)
    return product.to_dict()


@products_bp.post("/<int:product_id>/stock")
@require_actor
@require_staff
def adjust_stock_route(product_id: int):
    """Body: delta (non-zero int), reason."""
    payload = request.get_json(silent=True) or {}
    try:
        if "delta" not in payload:
            raise ValidationError("delta is required")
        product = catalog_service.adjust_product_stock(
            product_id=product_id,
            delta=coerce_int("delta", payload["delta"]),
            actor_user_id=g.actor.user_id,
            reason=str(payload.get("reason") or ""),
        )
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Failed to adjust stock"}, 500

    return product.to_dict()


@categories_bp.delete("/<int:category_id>")
@require_actor
@require_staff
def delete_category_route(category_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        category = catalog_service.delete_category(
            category_id=category_id,
            actor_user_id=g.actor.user_id,
            expected_version=_optional_version(payload),
        )
    except EngineError as e:
        return error_response(e)
    return category.to_dict()


@categories_bp.post("/<int:category_id>/restore")
@require_actor
@require_staff
def restore_category_route(category_id: int):
    try:
        category = catalog_service.restore_category(category_id=category_id, actor_user_id=g.actor.user_id)
    except EngineError as e:
        return error_response(e)
    return category.to_dict()
